"""统一客户端异常模型。

身份提供方与远端聊天 API 的所有失败都应该以 ClientError 的子类抛出，
便于 ConversationSync / VerificationFlow 统一捕获并转成用户可读提示。
原始的 httpx 异常不允许越过边界。
"""

from enum import Enum


class ErrorKind(str, Enum):
    TRANSPORT = "TRANSPORT"
    AUTH_REJECTED = "AUTH_REJECTED"
    SERVER_REJECTED = "SERVER_REJECTED"
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION = "VALIDATION"
    TOKEN_FETCH_FAILED = "TOKEN_FETCH_FAILED"


class ClientError(Exception):
    """客户端异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"、"EMAIL_NOT_FOUND"）。
        message: 用户可读错误信息（服务端给出的 message 优先）。
        http_status: 服务端返回的状态码；无响应时为 None。
        extra: 其他补充字段（例如 path、method）。
    """

    kind: ErrorKind = ErrorKind.SERVER_REJECTED

    def __init__(self, code: str, message: str, http_status: int | None = None, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(ClientError):
    """网络层错误：连接失败、超时等，没有拿到任何响应。"""

    kind = ErrorKind.TRANSPORT


class ApiError(ClientError):
    """服务端返回 4xx/5xx，message 为服务端给出的错误信息。"""

    kind = ErrorKind.SERVER_REJECTED


class AuthRejectedError(ApiError):
    """凭证无效、过期或缺失（401/403，或身份提供方拒绝凭证）。"""

    kind = ErrorKind.AUTH_REJECTED


class RateLimitError(ClientError):
    """限流错误，由调用方决定冷却策略，本层不做重试。"""

    kind = ErrorKind.RATE_LIMITED


class TokenFetchError(ClientError):
    """身份提供方拒绝签发 ID Token（例如会话刚刚过期）。"""

    kind = ErrorKind.TOKEN_FETCH_FAILED


class ValidationError(ClientError):
    """纯客户端侧的参数校验失败。"""

    kind = ErrorKind.VALIDATION
