"""会话令牌 → 访问令牌的交换与刷新。

本模块负责：

1. 持有浏览器得到的长期会话令牌（SessionCredential）。
2. 访问令牌缺失或即将过期时，调用会话端点换取新的访问令牌。
3. 并发调用时保证同一次过期只刷新一次（single-flight），
   其余调用等待同一个结果。

会话令牌被拒绝属于不可重试错误，直接以 AuthError 抛给调用方。
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from chatgpt_core.config.client_config import ClientConfig
from chatgpt_core.domain.exceptions import ApiError, AuthError, NetworkError
from chatgpt_core.domain.models import AccessToken, SessionCredential
from chatgpt_core.infrastructure.logging.logger import logger
from chatgpt_core.providers.registry import CHATGPT_CONFIG

# 会话端点没有给出过期时间时采用的访问令牌寿命
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)
# 超过该值的数值型过期时间视为毫秒时间戳（1e11 秒约为 5138 年）
EPOCH_MILLIS_THRESHOLD = 1e11


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialManager:
    """长期会话令牌与短期访问令牌的管理者。

    - ensure_valid(): 返回当前有效的访问令牌，必要时刷新。
    - invalidate(): 丢弃缓存的访问令牌。

    http_client 未传入时按需创建自己的 httpx.AsyncClient，并在 aclose() 时关闭。
    """

    def __init__(
        self,
        session_token: str,
        config: Optional[ClientConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._config = config or ClientConfig()
        self._credential = SessionCredential(long_lived_token=session_token)
        self._client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._inflight: Optional["asyncio.Future[AccessToken]"] = None
        self.refresh_count = 0

    @property
    def credential(self) -> SessionCredential:
        """当前凭据的快照，修改它不会影响管理器内部状态。"""
        return replace(self._credential)

    async def ensure_valid(self) -> AccessToken:
        cached = self._credential.cached_token(self._clock(), self._config.refresh_margin)
        if cached is not None:
            return cached
        # 同一次过期只发起一次交换，其余调用等待同一个结果（令牌或异常）
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
            self._inflight.add_done_callback(self._refresh_done)
        return await asyncio.shield(self._inflight)

    def _refresh_done(self, fut: "asyncio.Future[AccessToken]") -> None:
        if self._inflight is fut:
            self._inflight = None
        if not fut.cancelled():
            # 等待者全部取消时也要取走异常，避免 "exception was never retrieved"
            fut.exception()

    def invalidate(self) -> None:
        self._credential.clear()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout, trust_env=False)
        return self._client

    async def _refresh(self) -> AccessToken:
        """调用会话端点换取访问令牌，并更新缓存。"""

        url = CHATGPT_CONFIG.session_url(self._config.base_url)
        try:
            resp = await self._get_client().get(
                url,
                headers={
                    "Cookie": f"{CHATGPT_CONFIG.session_cookie}={self._credential.long_lived_token}",
                    "User-Agent": self._config.user_agent,
                    "Accept": "application/json",
                },
                timeout=self._config.request_timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(code="REQUEST_TIMEOUT", message=f"Session exchange timed out: {e}")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

        if 400 <= resp.status_code < 500:
            logger.warning(
                "Session token rejected",
                extra={"extra": {"status": resp.status_code}},
            )
            raise AuthError(
                code="SESSION_REJECTED",
                message=f"Session token rejected by credential exchange ({resp.status_code})",
                http_status=resp.status_code,
            )
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            raise AuthError(code="MALFORMED_SESSION", message="Credential exchange returned non-JSON body")
        if not isinstance(data, dict):
            raise AuthError(code="MALFORMED_SESSION", message="Credential exchange returned unexpected payload")

        token = data.get("accessToken")
        if not token:
            # 会话失效时服务端返回空对象 {}
            raise AuthError(code="SESSION_EXPIRED", message="Session token is expired or revoked")

        now = self._clock()
        expires_at = self._parse_expiry(data) or now + DEFAULT_TOKEN_LIFETIME
        access = AccessToken(token=token, expires_at=expires_at)
        if not access.is_valid(now, self._config.refresh_margin):
            raise AuthError(
                code="SESSION_EXPIRED",
                message=f"Credential exchange returned an already expired token ({expires_at.isoformat()})",
            )

        rotated = resp.cookies.get(CHATGPT_CONFIG.session_cookie)
        if rotated and rotated != self._credential.long_lived_token:
            self._credential.long_lived_token = rotated
            logger.info("Session token rotated by server")

        self._credential.short_lived_token = access.token
        self._credential.expires_at = access.expires_at
        self.refresh_count += 1
        logger.info(
            "Access token refreshed",
            extra={"extra": {"expires_at": expires_at.isoformat(), "refresh_count": self.refresh_count}},
        )
        return access

    @staticmethod
    def _parse_expiry(data: Dict[str, Any]) -> Optional[datetime]:
        """解析 expiresAt / expires 字段（两者都有时以 expiresAt 为准）。

        支持 ISO-8601 字符串与 epoch 时间戳；大于 1e11 的数值按毫秒处理。
        """

        raw = data.get("expiresAt") or data.get("expires")
        if raw is None or raw == "":
            return None
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            seconds = raw / 1000 if raw > EPOCH_MILLIS_THRESHOLD else raw
            try:
                return datetime.fromtimestamp(seconds, tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                raise AuthError(code="MALFORMED_SESSION", message=f"Unparseable expiry: {raw!r}")
        try:
            parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            raise AuthError(code="MALFORMED_SESSION", message=f"Unparseable expiry: {raw!r}")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
