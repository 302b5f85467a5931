"""身份提供方抽象接口。

SessionStore / TokenedClient / VerificationFlow 不直接依赖具体厂商的 HTTP 接口，
而是依赖此协议：

- 每个厂商实现一个 IdentityProvider（如 FirebaseIdentityProvider）。
- 所有网络方法都是协程，失败时抛出 domain.exceptions 中的 ClientError 子类，
  不允许未捕获的 httpx 异常越过边界。
"""

from typing import Callable, Optional, Protocol

from jai_core.domain.models import AuthUser

AuthListener = Callable[[Optional[AuthUser]], None]
Unsubscribe = Callable[[], None]


class IdentityProvider(Protocol):
    """身份提供方协议。

    实现者需要提供：
    - on_auth_change(callback): 注册登录态变化回调，返回取消订阅函数。
      新订阅者会在下一轮事件循环收到当前用户（可能为 None）。
    - get_current_user(): 当前用户快照，未登录返回 None。
    - 其余协程方法见各自说明。
    """

    name: str

    def on_auth_change(self, callback: AuthListener) -> Unsubscribe:
        ...

    def get_current_user(self) -> Optional[AuthUser]:
        ...

    async def get_fresh_id_token(self, user: AuthUser) -> str:
        """强制刷新并返回 ID Token，不允许返回缓存值。"""

        ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        ...

    async def sign_up_with_password(self, email: str, password: str) -> AuthUser:
        ...

    async def sign_in_with_federated_redirect(self, provider_id: Optional[str] = None) -> str:
        """发起联合登录，返回需要跳转的授权地址。"""

        ...

    async def complete_redirect_sign_in(self) -> Optional[AuthUser]:
        """完成挂起的联合登录；没有挂起的跳转时返回 None。"""

        ...

    async def send_verification_email(self, user: AuthUser) -> None:
        ...

    async def reload_user(self, user: AuthUser) -> AuthUser:
        """从身份提供方重新拉取用户（邮箱验证状态等），返回新的用户快照。"""

        ...

    async def sign_out(self) -> None:
        ...
