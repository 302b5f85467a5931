"""会话状态存储。

把身份提供方的登录态通知收敛成唯一权威的 Session 快照：

- 初始为 Session.loading()；第一次通知或联合登录回跳兑换完成后，
  is_loading 一定变为 False（即使兑换失败），不允许卡在加载态。
- 每次通知整体替换 Session，不做字段级修改。
- 回跳兑换失败只记录日志，随后的 on_auth_change 通知才是权威结果。
"""

from typing import Callable, List, Optional

from jai_core.domain.exceptions import ClientError
from jai_core.domain.models import AuthUser, Session
from jai_core.identity.base import IdentityProvider, Unsubscribe
from jai_core.infrastructure.logging.logger import logger

SessionListener = Callable[[Session], None]


class SessionStore:
    def __init__(self, identity: IdentityProvider):
        self._identity = identity
        self._session = Session.loading()
        self._current_user: Optional[AuthUser] = None
        self._listeners: List[SessionListener] = []
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._current_user

    @property
    def is_open(self) -> bool:
        return self._unsubscribe is not None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def open(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._identity.on_auth_change(self._on_auth_change)
        try:
            user = await self._identity.complete_redirect_sign_in()
            if user is not None:
                self._apply(user)
        except ClientError as e:
            logger.error(
                "session.redirect_failed",
                extra={"extra": {"code": e.code, "error": e.message, "kind": e.kind.value}},
            )
        finally:
            if self._session.is_loading:
                self._apply(self._identity.get_current_user())

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def __aenter__(self) -> "SessionStore":
        try:
            await self.open()
        except BaseException:
            self.close()
            raise
        return self

    async def __aexit__(self, *exc) -> bool:
        self.close()
        return False

    def _on_auth_change(self, user: Optional[AuthUser]) -> None:
        self._apply(user)

    def _apply(self, user: Optional[AuthUser]) -> None:
        self._current_user = user
        new_session = Session.from_user(user)
        if new_session == self._session:
            return
        self._session = new_session
        logger.info(
            "session.changed",
            extra={"extra": {"user_id": new_session.user_id, "verified": new_session.is_email_verified}},
        )
        for listener in list(self._listeners):
            listener(new_session)
