"""邮箱验证流程。

状态：UNVERIFIED -> CHECKING -> VERIFIED / UNVERIFIED。
重发子状态携带 cooldown（剩余秒数）：

- cooldown > 0 时 resend() 直接拒绝；
- 重发成功后 cooldown 置为固定窗口（默认 60 秒），每秒递减到 0；
- 被限流时同样施加冷却，避免继续轰炸身份提供方；其他失败不加冷却，可立即重试；
- close() 取消倒计时任务。
"""

import asyncio
from enum import Enum
from typing import Callable, List, Optional

from jai_core.api.client import TokenedClient
from jai_core.config.settings import settings
from jai_core.domain.exceptions import ClientError, RateLimitError
from jai_core.identity.base import IdentityProvider
from jai_core.infrastructure.logging.logger import logger

RESEND_OK = "A new verification email has been sent. Please check your inbox."
RESEND_RATE_LIMITED = "Too many requests. Please wait before requesting another verification email."
RESEND_FAILED = "Failed to send verification email. Please try again later."
VERIFIED_OK = "Email successfully verified!"
NOT_YET_VERIFIED = "Email is still not verified. Please check your inbox or try resending the email."
REFRESH_FAILED = "Failed to refresh status. Please try again."
SIGN_OUT_FAILED = "An error occurred while trying to return to the login page."


class VerificationState(str, Enum):
    UNVERIFIED = "unverified"
    CHECKING = "checking"
    VERIFIED = "verified"


class VerificationFlow:
    def __init__(
        self,
        identity: IdentityProvider,
        client: Optional[TokenedClient] = None,
        email_hint: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
        tick_seconds: float = 1.0,
    ):
        self._identity = identity
        self._client = client
        self.cooldown_window = cooldown_seconds or settings.resend_cooldown_seconds
        self._tick = tick_seconds
        self._timer: Optional[asyncio.Task] = None
        self._listeners: List[Callable[["VerificationFlow"], None]] = []
        self.state = VerificationState.UNVERIFIED
        self.cooldown = 0
        self.email = email_hint or ""
        self.info = ""
        self.error = ""
        self.is_busy = False
        self.needs_login = False

    @property
    def can_resend(self) -> bool:
        return self.cooldown == 0 and not self.is_busy and self.state is not VerificationState.VERIFIED

    def subscribe(self, listener: Callable[["VerificationFlow"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- 生命周期 ----

    async def start(self) -> None:
        """进入验证页：刷新一次用户，确定初始状态。"""
        user = self._identity.get_current_user()
        if user is None:
            self.needs_login = True
            self._notify()
            return
        self.is_busy = True
        try:
            user = await self._identity.reload_user(user)
        except ClientError as e:
            logger.error("verification.initial_reload_failed", extra={"extra": {"code": e.code, "error": e.message}})
        finally:
            self.is_busy = False
        self.email = self.email or user.email or ""
        self.state = VerificationState.VERIFIED if user.email_verified else VerificationState.UNVERIFIED
        self._notify()

    def close(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def __aenter__(self) -> "VerificationFlow":
        try:
            await self.start()
        except BaseException:
            self.close()
            raise
        return self

    async def __aexit__(self, *exc) -> bool:
        self.close()
        return False

    # ---- 操作 ----

    async def resend(self) -> bool:
        if not self.can_resend:
            return False
        user = self._identity.get_current_user()
        if user is None:
            return False
        self.is_busy = True
        self.info = ""
        self.error = ""
        self._notify()
        try:
            if self._client is not None:
                await self._client.post_json("/auth/resend-verification")
            else:
                await self._identity.send_verification_email(user)
        except RateLimitError as e:
            logger.warning("verification.resend_rate_limited", extra={"extra": {"code": e.code}})
            self.error = RESEND_RATE_LIMITED
            self._start_cooldown()
            return False
        except ClientError as e:
            logger.error("verification.resend_failed", extra={"extra": {"code": e.code, "error": e.message}})
            self.error = RESEND_FAILED
            return False
        finally:
            self.is_busy = False
            self._notify()
        self.info = RESEND_OK
        self._start_cooldown()
        self._notify()
        return True

    async def check_now(self) -> bool:
        user = self._identity.get_current_user()
        if user is None or self.is_busy:
            return False
        self.state = VerificationState.CHECKING
        self.is_busy = True
        self.info = ""
        self.error = ""
        self._notify()
        try:
            user = await self._identity.reload_user(user)
        except ClientError as e:
            logger.error("verification.reload_failed", extra={"extra": {"code": e.code, "error": e.message}})
            self.state = VerificationState.UNVERIFIED
            self.error = REFRESH_FAILED
            return False
        finally:
            self.is_busy = False
            self._notify()
        if user.email_verified:
            self.state = VerificationState.VERIFIED
            self.info = VERIFIED_OK
            self.close()
        else:
            self.state = VerificationState.UNVERIFIED
            self.error = NOT_YET_VERIFIED
        self._notify()
        return user.email_verified

    async def back_to_login(self) -> bool:
        self.is_busy = True
        self.info = ""
        self.error = ""
        try:
            await self._identity.sign_out()
        except ClientError as e:
            logger.error("verification.sign_out_failed", extra={"extra": {"code": e.code, "error": e.message}})
            self.error = SIGN_OUT_FAILED
            return False
        finally:
            self.is_busy = False
            self._notify()
        self.close()
        self.needs_login = True
        return True

    # ---- 倒计时 ----

    def _start_cooldown(self) -> None:
        self.close()
        self.cooldown = self.cooldown_window
        self._timer = asyncio.get_running_loop().create_task(self._countdown())

    async def _countdown(self) -> None:
        while self.cooldown > 0:
            await asyncio.sleep(self._tick)
            self.cooldown = max(0, self.cooldown - 1)
            self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
