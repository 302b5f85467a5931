"""携带身份令牌的远端 API 客户端。

每一次请求前：
- 若 SessionStore 中有当前用户，强制刷新 ID Token（不允许使用缓存令牌，
  否则下游会以过期凭证拒绝请求），并以 Authorization: Bearer <token> 附带；
- 若没有用户，则以匿名方式发送。

失败统一映射为 domain.exceptions 中的异常，本层不做任何自动重试，
重试策略（如果有）由调用方决定。
"""

from typing import Any, Dict, Optional

import httpx

from jai_core.config.settings import settings
from jai_core.domain.exceptions import (
    ApiError,
    AuthRejectedError,
    ClientError,
    NetworkError,
    RateLimitError,
    TokenFetchError,
)
from jai_core.identity.base import IdentityProvider
from jai_core.infrastructure.logging.logger import logger
from jai_core.session.store import SessionStore


class TokenedClient:
    def __init__(self, session_store: SessionStore, identity: IdentityProvider, cfg=settings):
        self._sessions = session_store
        self._identity = identity
        self._settings = cfg

    async def call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        token = await self._fetch_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self._settings.api_base_url}{path}"
        logger.info(
            "client.request",
            extra={"extra": {"method": method, "path": path, "authenticated": bool(token)}},
        )
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.request(method, url, json=body, headers=headers)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), method=method, path=path)

        if resp.status_code in (401, 403):
            raise AuthRejectedError(
                code="AUTH_REJECTED",
                message=self._server_message(resp),
                http_status=resp.status_code,
                method=method,
                path=path,
            )
        if resp.status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT",
                message=self._server_message(resp),
                http_status=resp.status_code,
                method=method,
                path=path,
            )
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=self._server_message(resp),
                http_status=resp.status_code,
                method=method,
                path=path,
            )
        return resp

    async def get_json(self, path: str) -> Any:
        resp = await self.call("GET", path)
        return self._decode(resp, "GET", path)

    async def post_json(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        resp = await self.call("POST", path, body)
        if not resp.content:
            return None
        return self._decode(resp, "POST", path)

    async def delete(self, path: str) -> None:
        await self.call("DELETE", path)

    async def _fetch_token(self) -> Optional[str]:
        user = self._sessions.current_user
        if user is None:
            return None
        try:
            return await self._identity.get_fresh_id_token(user)
        except TokenFetchError:
            raise
        except ClientError as e:
            raise TokenFetchError(code="TOKEN_FETCH_FAILED", message=e.message, http_status=e.http_status)

    @staticmethod
    def _decode(resp: httpx.Response, method: str, path: str) -> Any:
        try:
            return resp.json()
        except ValueError:
            raise ApiError(
                code="INVALID_JSON",
                message="Server returned a malformed response",
                http_status=resp.status_code,
                method=method,
                path=path,
            )

    @staticmethod
    def _server_message(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            for key in ("error", "message"):
                value = data.get(key)
                if isinstance(value, str) and value:
                    return value
                if isinstance(value, dict) and value.get("message"):
                    return str(value["message"])
        # 非 JSON 的错误页（如网关 HTML）不透传给用户，由上层使用兜底文案
        return ""
