"""Firebase Auth 身份提供方适配器。

直接调用 Firebase Auth REST 接口（与 Web SDK 使用的端点一致）：
- Identity Toolkit: {identity_base_url}/accounts:<method>?key=<api_key>
- Secure Token:     {token_base_url}/token?key=<api_key>

错误响应形如 {"error": {"code": 400, "message": "EMAIL_NOT_FOUND"}}，
由 _raise_for_error 映射为 domain.exceptions 中的统一异常。
"""

import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional

import httpx

from jai_core.config.settings import settings
from jai_core.domain.exceptions import (
    ApiError,
    AuthRejectedError,
    ClientError,
    NetworkError,
    RateLimitError,
    TokenFetchError,
    ValidationError,
)
from jai_core.domain.models import AuthUser
from jai_core.identity.base import AuthListener, Unsubscribe
from jai_core.infrastructure.logging.logger import logger

RATE_LIMIT_CODES = {"TOO_MANY_ATTEMPTS_TRY_LATER", "QUOTA_EXCEEDED"}
AUTH_REJECTED_CODES = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_ID_TOKEN",
    "TOKEN_EXPIRED",
    "INVALID_REFRESH_TOKEN",
    "USER_DISABLED",
    "USER_NOT_FOUND",
}


class FirebaseIdentityProvider:
    """Firebase Auth REST 客户端实现。"""

    name = "firebase"

    def __init__(self, cfg=settings):
        self._settings = cfg
        self._current_user: Optional[AuthUser] = None
        self._listeners: List[AuthListener] = []
        self._pending_session_id: Optional[str] = None
        self._redirect_callback_url: Optional[str] = None

    # ---- 订阅 ----

    def on_auth_change(self, callback: AuthListener) -> Unsubscribe:
        self._listeners.append(callback)
        asyncio.get_running_loop().call_soon(self._deliver_initial, callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def get_current_user(self) -> Optional[AuthUser]:
        return self._current_user

    # ---- 令牌 ----

    async def get_fresh_id_token(self, user: AuthUser) -> str:
        if not user.refresh_token:
            raise TokenFetchError(code="NO_REFRESH_TOKEN", message="User has no refresh token")
        try:
            data = await self._post_form(
                f"{self._settings.token_base_url}/token",
                {"grant_type": "refresh_token", "refresh_token": user.refresh_token},
            )
        except ClientError as e:
            raise TokenFetchError(code=e.code, message=e.message, http_status=e.http_status)
        id_token = data.get("id_token")
        if not id_token:
            raise TokenFetchError(code="EMPTY_TOKEN", message="Token endpoint returned no id_token")
        # 只更新令牌，不算登录态变化，不通知订阅者
        if self._current_user is not None and self._current_user.uid == user.uid:
            self._current_user = replace(
                self._current_user,
                id_token=id_token,
                refresh_token=data.get("refresh_token") or self._current_user.refresh_token,
            )
        return id_token

    # ---- 登录 / 注册 ----

    async def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        self._require_credentials(email, password)
        data = await self._call(
            "accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        user = await self._lookup(self._required(data, "idToken"), data.get("refreshToken"))
        self._set_user(user)
        return user

    async def sign_up_with_password(self, email: str, password: str) -> AuthUser:
        self._require_credentials(email, password)
        data = await self._call(
            "accounts:signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        user = await self._lookup(self._required(data, "idToken"), data.get("refreshToken"))
        self._set_user(user)
        return user

    async def sign_in_with_federated_redirect(self, provider_id: Optional[str] = None) -> str:
        data = await self._call(
            "accounts:createAuthUri",
            {
                "providerId": provider_id or self._settings.federated_provider_id,
                "continueUri": self._settings.redirect_uri,
            },
        )
        self._pending_session_id = data.get("sessionId")
        self._redirect_callback_url = None
        return self._required(data, "authUri")

    def receive_redirect_callback(self, url: str) -> None:
        """记录联合登录回跳地址，等待 complete_redirect_sign_in 兑换。"""
        self._redirect_callback_url = url

    async def complete_redirect_sign_in(self) -> Optional[AuthUser]:
        if not self._pending_session_id or not self._redirect_callback_url:
            return None
        session_id, request_uri = self._pending_session_id, self._redirect_callback_url
        self._pending_session_id = None
        self._redirect_callback_url = None
        data = await self._call(
            "accounts:signInWithIdp",
            {
                "requestUri": request_uri,
                "sessionId": session_id,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        user = await self._lookup(self._required(data, "idToken"), data.get("refreshToken"))
        self._set_user(user)
        return user

    # ---- 邮箱验证 ----

    async def send_verification_email(self, user: AuthUser) -> None:
        token = await self.get_fresh_id_token(user)
        await self._call("accounts:sendOobCode", {"requestType": "VERIFY_EMAIL", "idToken": token})

    async def reload_user(self, user: AuthUser) -> AuthUser:
        token = await self.get_fresh_id_token(user)
        current = self._current_user or user
        reloaded = await self._lookup(token, current.refresh_token)
        if self._current_user is not None and self._current_user.uid == reloaded.uid:
            changed = (
                self._current_user.email_verified != reloaded.email_verified
                or self._current_user.provider_ids != reloaded.provider_ids
                or self._current_user.email != reloaded.email
            )
            if changed:
                self._set_user(reloaded)
            else:
                self._current_user = reloaded
        return reloaded

    async def sign_out(self) -> None:
        self._pending_session_id = None
        self._redirect_callback_url = None
        self._set_user(None)

    # ---- 辅助方法 ----

    def _deliver_initial(self, callback: AuthListener) -> None:
        if callback in self._listeners:
            callback(self._current_user)

    def _set_user(self, user: Optional[AuthUser]) -> None:
        self._current_user = user
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception:
                logger.exception("identity.listener_failed")

    async def _lookup(self, id_token: str, refresh_token: Optional[str]) -> AuthUser:
        data = await self._call("accounts:lookup", {"idToken": id_token})
        users = data.get("users") or []
        if not users:
            raise AuthRejectedError(code="USER_NOT_FOUND", message="User not found", http_status=400)
        if not isinstance(users, list) or not isinstance(users[0], dict):
            raise ApiError(code="INVALID_JSON", message="Identity service returned a malformed user record")
        return self._build_user(users[0], id_token, refresh_token)

    @classmethod
    def _build_user(cls, payload: Dict[str, Any], id_token: str, refresh_token: Optional[str]) -> AuthUser:
        provider_ids = tuple(
            p.get("providerId") for p in payload.get("providerUserInfo") or [] if p.get("providerId")
        )
        if not provider_ids and payload.get("passwordHash"):
            provider_ids = ("password",)
        return AuthUser(
            uid=cls._required(payload, "localId"),
            email=payload.get("email"),
            email_verified=bool(payload.get("emailVerified", False)),
            provider_ids=provider_ids,
            id_token=id_token,
            refresh_token=refresh_token,
        )

    def _require_credentials(self, email: str, password: str) -> None:
        if not email or not password:
            raise ValidationError(code="MISSING_CREDENTIALS", message="Email and password are required")

    def _require_api_key(self) -> str:
        key = getattr(self._settings, "firebase_api_key", None)
        if not key:
            raise ValidationError(code="MISSING_API_KEY", message="FIREBASE_API_KEY not set")
        return key

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        key = self._require_api_key()
        url = f"{self._settings.identity_base_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(url, params={"key": key}, json=payload)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_error(resp)
        return self._decode(resp)

    async def _post_form(self, url: str, form: Dict[str, str]) -> Dict[str, Any]:
        key = self._require_api_key()
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(url, params={"key": key}, data=form)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_error(resp)
        return self._decode(resp)

    @staticmethod
    def _decode(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise ApiError(
                code="INVALID_JSON",
                message="Identity service returned a malformed response",
                http_status=resp.status_code,
            )
        return data

    @staticmethod
    def _required(data: Dict[str, Any], key: str) -> Any:
        value = data.get(key)
        if not value:
            raise ApiError(code="INVALID_JSON", message=f"Identity service response is missing {key}")
        return value

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            error = resp.json().get("error") or {}
        except ValueError:
            error = {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        message = message or resp.text
        # 形如 "TOO_MANY_ATTEMPTS_TRY_LATER : Access to this account has been temporarily disabled"
        code = message.split(" : ", 1)[0].strip()
        if resp.status_code == 429 or code in RATE_LIMIT_CODES:
            raise RateLimitError(code=code or "RATE_LIMIT", message=message, http_status=resp.status_code)
        if code in AUTH_REJECTED_CODES or resp.status_code in (401, 403):
            raise AuthRejectedError(code=code, message=message, http_status=resp.status_code)
        raise ApiError(code=code or "API_ERROR", message=message, http_status=resp.status_code)
