"""会话同步控制器。

持有会话摘要列表与当前激活会话的消息历史，负责对远端 API 的
新建 / 选择 / 删除 / 发送编排。渲染层只读这里的状态，所有修改都经由本类方法。

并发约定（单线程事件循环，但请求完成顺序不保证）：
- select_conversation 采用“后发覆盖”：新的选择会让之前仍在途的选择结果失效，
  以最后一次发起的请求为准，而不是最后一次返回的响应；
- send_message 单飞：已有发送在途时，新的发送直接拒绝（记录日志，不追加任何消息）；
- close() 之后到达的响应一律丢弃，不会改动任何状态。
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from jai_core.api.client import TokenedClient
from jai_core.domain.exceptions import ApiError, ClientError
from jai_core.domain.models import Conversation, ConversationSummary, Message, Sender
from jai_core.infrastructure.logging.logger import logger

SyncListener = Callable[["ConversationSync"], None]

FALLBACK_ERROR_TEXT = "Could not get response"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """解析 ISO-8601 时间戳（兼容结尾的 Z）；无法解析时返回 None。"""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationSync:
    def __init__(self, client: TokenedClient):
        self._client = client
        self._summaries: List[ConversationSummary] = []
        self._active: Optional[Conversation] = None
        self._is_busy = False
        self._is_sending = False
        self._last_error: Optional[str] = None
        self._generation = 0
        self._select_token = 0
        self._selecting_id: Optional[str] = None
        self._listeners: List[SyncListener] = []

    # ---- 只读状态 ----

    @property
    def summaries(self) -> List[ConversationSummary]:
        return list(self._summaries)

    @property
    def active(self) -> Optional[Conversation]:
        return self._active

    @property
    def active_id(self) -> Optional[str]:
        return self._active.id if self._active is not None else None

    @property
    def messages(self) -> List[Message]:
        return list(self._active.messages) if self._active is not None else []

    @property
    def is_busy(self) -> bool:
        return self._is_busy

    @property
    def is_sending(self) -> bool:
        return self._is_sending

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- 生命周期 ----

    def close(self) -> None:
        """让所有在途请求的结果失效。"""
        self._generation += 1
        self._is_busy = False
        self._is_sending = False
        self._selecting_id = None

    def reset(self) -> None:
        """登出时清空本地状态，在途结果同样作废。"""
        self.close()
        self._summaries = []
        self._active = None
        self._last_error = None
        self._notify()

    # ---- 操作 ----

    async def refresh_summaries(self) -> bool:
        generation = self._generation
        try:
            data = await self._client.get_json("/conversations")
            summaries = [self._to_summary(self._expect_dict(item)) for item in self._expect_list(data)]
        except (ClientError, KeyError, TypeError) as e:
            if self._alive(generation):
                self._report("sync.refresh_failed", e)
            return False
        if not self._alive(generation):
            return False
        self._summaries = summaries
        self._notify()
        return True

    def new_chat(self) -> None:
        self._active = None
        self._notify()

    async def select_conversation(self, conversation_id: str) -> bool:
        if self._active is not None and conversation_id == self._active.id:
            return True
        generation = self._generation
        self._select_token += 1
        token = self._select_token
        self._selecting_id = conversation_id
        self._is_busy = True
        self._active = None
        self._notify()
        try:
            data = await self._client.get_json(f"/conversations/{conversation_id}")
            history = self._expect_list(self._expect_dict(data).get("messages"))
            messages = [self._to_message(self._expect_dict(item)) for item in history]
        except (ClientError, KeyError, TypeError, ValueError) as e:
            if self._alive(generation) and token == self._select_token:
                self._report("sync.select_failed", e, conversation_id=conversation_id)
            return False
        finally:
            if self._alive(generation) and token == self._select_token:
                self._is_busy = False
                self._selecting_id = None
        if not self._alive(generation) or token != self._select_token:
            logger.info("sync.select_superseded", extra={"extra": {"conversation_id": conversation_id}})
            return False
        self._active = Conversation(id=conversation_id, messages=messages)
        self._notify()
        return True

    async def delete_conversation(self, conversation_id: str) -> bool:
        generation = self._generation
        error: Optional[ClientError] = None
        try:
            await self._client.delete(f"/conversations/{conversation_id}")
        except ClientError as e:
            error = e
        if not self._alive(generation):
            return False
        if error is None and self._selecting_id == conversation_id:
            # 正在加载的会话被删除，作废这次选择
            self._select_token += 1
            self._selecting_id = None
            self._is_busy = False
        if error is None and self._active is not None and self._active.id == conversation_id:
            self._active = None
            self._notify()
        await self.refresh_summaries()
        if error is not None:
            self._report("sync.delete_failed", error, conversation_id=conversation_id)
            return False
        return True

    async def send_message(self, text: str) -> Optional[Message]:
        if not text or not text.strip():
            return None
        if self._is_sending:
            logger.warning("sync.send_rejected_in_flight", extra={"extra": {"active_id": self.active_id}})
            return None

        generation = self._generation
        if self._active is None:
            self._active = Conversation(id=None)
        conversation = self._active
        conversation.messages.append(Message(sender=Sender.USER, raw_content=text, created_at=_now()))
        self._is_sending = True
        self._is_busy = True
        self._notify()

        adopted_new_id = False
        try:
            data = await self._client.post_json("/chat", {"prompt": text, "conversationId": conversation.id})
            data = self._expect_dict(data)
            ai_payload = self._expect_dict(data.get("aiMessage"))
            reply = Message(
                sender=Sender.AI,
                raw_content=ai_payload.get("content") or "",
                created_at=parse_timestamp(ai_payload.get("createdAt")) or _now(),
                id=ai_payload.get("_id") or ai_payload.get("id"),
            )
            if self._alive(generation):
                conversation.messages.append(reply)
                new_id = data.get("newConversationId")
                if conversation.id is None and new_id and conversation is self._active:
                    conversation.id = new_id
                    adopted_new_id = True
        except ClientError as e:
            reply = Message(sender=Sender.AI, raw_content=f"⚠️ Error: {self._error_text(e)}", created_at=_now())
            logger.error(
                "sync.send_failed",
                extra={"extra": {"code": e.code, "kind": e.kind.value, "error": e.message}},
            )
            if self._alive(generation):
                conversation.messages.append(reply)
        finally:
            if self._alive(generation):
                self._is_sending = False
                self._is_busy = False
                self._notify()

        if adopted_new_id:
            await self.refresh_summaries()
        return reply

    # ---- 辅助方法 ----

    def _alive(self, generation: int) -> bool:
        return generation == self._generation

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _report(self, event: str, error: Exception, **fields: Any) -> None:
        message = (error.message if isinstance(error, ClientError) else str(error)) or FALLBACK_ERROR_TEXT
        self._last_error = message
        payload: Dict[str, Any] = {"error": message}
        if isinstance(error, ClientError):
            payload.update({"code": error.code, "kind": error.kind.value, "http_status": error.http_status})
        payload.update(fields)
        logger.error(event, extra={"extra": payload})
        self._notify()

    @staticmethod
    def _error_text(error: ClientError) -> str:
        if (isinstance(error, ApiError) or error.http_status is not None) and error.message:
            return error.message
        return FALLBACK_ERROR_TEXT

    @staticmethod
    def _expect_dict(data: Any) -> Dict[str, Any]:
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ApiError(code="INVALID_RESPONSE", message="Server returned an unexpected response")
        return data

    @staticmethod
    def _expect_list(data: Any) -> List[Any]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise ApiError(code="INVALID_RESPONSE", message="Server returned an unexpected response")
        return data

    @staticmethod
    def _to_summary(item: Dict[str, Any]) -> ConversationSummary:
        return ConversationSummary(
            id=str(item.get("_id") or item["id"]),
            title=item.get("title") or "",
            updated_at=parse_timestamp(item.get("updatedAt")),
        )

    @staticmethod
    def _to_message(item: Dict[str, Any]) -> Message:
        sender = Sender.USER if item.get("sender") == Sender.USER.value else Sender.AI
        return Message(
            sender=sender,
            raw_content=item.get("content") or "",
            created_at=parse_timestamp(item.get("createdAt")) or _now(),
            id=item.get("_id") or item.get("id"),
        )
