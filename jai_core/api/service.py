"""对外服务门面。

把身份提供方、SessionStore、TokenedClient、ConversationSync 装配在一起，
供渲染层调用：渲染层只读取状态快照，并把用户意图原样转发到这里。
"""

import asyncio
from typing import List, Optional, Set, Tuple

from jai_core.api.client import TokenedClient
from jai_core.chat.segmenter import segment
from jai_core.chat.sync import ConversationSync
from jai_core.config.settings import settings
from jai_core.domain.exceptions import ClientError
from jai_core.domain.models import AccessDecision, AuthUser, Message, RouteKind, Segment, Session
from jai_core.identity import create_identity_provider
from jai_core.identity.base import IdentityProvider
from jai_core.infrastructure.logging.logger import logger
from jai_core.session import access_policy
from jai_core.session.store import SessionStore
from jai_core.session.verification import VerificationFlow


class ChatClientApp:
    def __init__(self, identity: Optional[IdentityProvider] = None, cfg=settings):
        self._settings = cfg
        self.identity = identity or create_identity_provider()
        self.sessions = SessionStore(self.identity)
        self.client = TokenedClient(self.sessions, self.identity, cfg)
        self.sync = ConversationSync(self.client)
        self._last_user_id: Optional[str] = None
        self._refreshed_for: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = None

    @property
    def session(self) -> Session:
        return self.sessions.session

    # ---- 生命周期 ----

    async def start(self) -> None:
        self._unsubscribe = self.sessions.subscribe(self._on_session_change)
        await self.sessions.open()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.sync.close()
        self.sessions.close()

    async def __aenter__(self) -> "ChatClientApp":
        try:
            await self.start()
        except BaseException:
            self.close()
            raise
        return self

    async def __aexit__(self, *exc) -> bool:
        self.close()
        return False

    # ---- 导航 ----

    def navigate(self, path: str, verification_hint: Optional[str] = None) -> Tuple[AccessDecision, Optional[str]]:
        """每次导航都基于最新会话重新计算，不缓存。"""
        return access_policy.navigate(self.session, path, verification_hint)

    async def refresh_if_allowed(self) -> bool:
        if access_policy.decide(self.session, RouteKind.PROTECTED) is not AccessDecision.ALLOW:
            return False
        return await self.sync.refresh_summaries()

    # ---- 身份意图 ----

    async def sign_in(self, email: str, password: str) -> Tuple[AccessDecision, Optional[str]]:
        """密码登录；未验证的用户会顺带重发一次验证邮件，然后被导向验证页。"""
        user = await self.identity.sign_in_with_password(email, password)
        if not user.email_verified:
            await self._send_verification(user)
        return self.navigate(access_policy.HOME_PATH, verification_hint=email)

    async def sign_up(self, email: str, password: str) -> Tuple[AccessDecision, Optional[str]]:
        user = await self.identity.sign_up_with_password(email, password)
        await self._send_verification(user)
        return self.navigate(access_policy.VERIFY_PATH, verification_hint=email)

    async def sign_in_federated(self, provider_id: Optional[str] = None) -> str:
        return await self.identity.sign_in_with_federated_redirect(provider_id)

    async def logout(self) -> bool:
        try:
            await self.identity.sign_out()
        except ClientError as e:
            logger.error("app.logout_failed", extra={"extra": {"code": e.code, "error": e.message}})
            return False
        return True

    def verification(self, email_hint: Optional[str] = None) -> VerificationFlow:
        client = self.client if self._settings.resend_via_api else None
        return VerificationFlow(
            self.identity,
            client=client,
            email_hint=email_hint,
            cooldown_seconds=self._settings.resend_cooldown_seconds,
        )

    # ---- 会话意图 ----

    async def send_message(self, text: str) -> Optional[Message]:
        return await self.sync.send_message(text)

    async def select_conversation(self, conversation_id: str) -> bool:
        return await self.sync.select_conversation(conversation_id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await self.sync.delete_conversation(conversation_id)

    def new_chat(self) -> None:
        self.sync.new_chat()

    def render_segments(self, message: Message) -> List[Segment]:
        return segment(message.raw_content, self._settings.default_code_language)

    # ---- 辅助方法 ----

    async def _send_verification(self, user: AuthUser) -> None:
        try:
            await self.identity.send_verification_email(user)
        except ClientError as e:
            logger.warning("app.verification_email_failed", extra={"extra": {"code": e.code, "error": e.message}})

    def _on_session_change(self, session: Session) -> None:
        if session.user_id != self._last_user_id:
            if self._last_user_id is not None:
                self.sync.reset()
            self._last_user_id = session.user_id
            self._refreshed_for = None
        allowed = access_policy.decide(session, RouteKind.PROTECTED) is AccessDecision.ALLOW
        if allowed and self._refreshed_for != session.user_id:
            self._refreshed_for = session.user_id
            # 会话通知是同步回调，刷新放到事件循环里执行
            task = asyncio.get_running_loop().create_task(self.sync.refresh_summaries())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)


_app: Optional[ChatClientApp] = None


def get_default_app() -> ChatClientApp:
    """获取默认的客户端实例（单例）。"""
    global _app
    if _app is None:
        _app = ChatClientApp()
    return _app
