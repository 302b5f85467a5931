"""客户端共享的领域模型。

本模块定义了会话层、同步层与渲染层之间共享的标准数据结构：

- AuthUser: 身份提供方返回的用户记录（只读，刷新时整体替换）。
- Session: SessionStore 对外暴露的权威会话快照。
- ConversationSummary / Conversation / Message: 远端会话在本地的镜像。
- TextSegment / CodeSegment: 从 AI 原始回复中解析出的可渲染片段。

所有组件只依赖这些模型，远端 JSON 与模型之间的转换由各自的适配层负责。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple, Union


class ProviderKind(str, Enum):
    """登录方式。只有 PASSWORD 需要强制邮箱验证。"""

    PASSWORD = "password"
    FEDERATED = "federated"

    @classmethod
    def from_provider_id(cls, provider_id: str) -> "ProviderKind":
        return cls.PASSWORD if provider_id == "password" else cls.FEDERATED


class AccessDecision(str, Enum):
    SHOW_LOADING = "show_loading"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    REDIRECT_TO_VERIFY = "redirect_to_verify"
    REDIRECT_TO_HOME = "redirect_to_home"
    ALLOW = "allow"


class RouteKind(str, Enum):
    PROTECTED = "protected"
    PUBLIC_ONLY = "public_only"
    VERIFICATION = "verification"


class Sender(str, Enum):
    USER = "user"
    AI = "ai"


@dataclass(frozen=True)
class AuthUser:
    """身份提供方的用户记录。

    - provider_ids: 该账号绑定的登录方式 ID，如 ("password",) 或 ("google.com",)。
    - id_token / refresh_token: 仅供 IdentityProvider 内部刷新令牌使用，
      其他组件必须通过 get_fresh_id_token 获取令牌。
    """

    uid: str
    email: Optional[str]
    email_verified: bool
    provider_ids: Tuple[str, ...] = ()
    id_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class Session:
    """会话快照，每次身份通知都整体替换，不做字段级修改。"""

    user_id: Optional[str] = None
    email: Optional[str] = None
    is_email_verified: bool = False
    sign_in_providers: FrozenSet[ProviderKind] = frozenset()
    is_loading: bool = False

    @classmethod
    def loading(cls) -> "Session":
        return cls(is_loading=True)

    @classmethod
    def from_user(cls, user: Optional[AuthUser]) -> "Session":
        if user is None:
            return cls()
        return cls(
            user_id=user.uid,
            email=user.email,
            is_email_verified=user.email_verified,
            sign_in_providers=frozenset(ProviderKind.from_provider_id(p) for p in user.provider_ids),
        )

    @property
    def has_user(self) -> bool:
        return self.user_id is not None

    @property
    def needs_verification(self) -> bool:
        """密码用户且邮箱未验证。联合登录用户永远不需要。"""
        return ProviderKind.PASSWORD in self.sign_in_providers and not self.is_email_verified


@dataclass(frozen=True)
class ConversationSummary:
    id: str
    title: str
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Message:
    """一条聊天消息。乐观追加的用户消息没有 id。"""

    sender: Sender
    raw_content: str
    created_at: datetime
    id: Optional[str] = None


@dataclass
class Conversation:
    """当前激活的会话。新建且尚未收到服务端 id 时 id 为 None。"""

    id: Optional[str]
    messages: List[Message] = field(default_factory=list)


@dataclass(frozen=True)
class TextSegment:
    content: str
    type: str = "text"


@dataclass(frozen=True)
class CodeSegment:
    language: str
    content: str
    type: str = "code"


Segment = Union[TextSegment, CodeSegment]
