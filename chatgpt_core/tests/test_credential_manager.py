import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from chatgpt_core.config.client_config import ClientConfig
from chatgpt_core.domain.exceptions import ApiError, AuthError, NetworkError
from chatgpt_core.providers.auth import CredentialManager

SESSION_TOKEN = "session-token-123"


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class SessionEndpoint:
    """伪造会话端点，记录调用次数与收到的 Cookie。"""

    def __init__(self, clock, lifetime=timedelta(hours=1), status=200, body=None, headers=None, delay=0.0):
        self.clock = clock
        self.lifetime = lifetime
        self.status = status
        self.body = body
        self.headers = headers or {}
        self.delay = delay
        self.calls = 0
        self.cookies = []

    async def __call__(self, request):
        self.calls += 1
        self.cookies.append(request.headers.get("cookie"))
        if self.delay:
            await asyncio.sleep(self.delay)
        body = self.body
        if body is None:
            body = {
                "accessToken": f"access-{self.calls}",
                "expires": (self.clock() + self.lifetime).isoformat().replace("+00:00", "Z"),
            }
        return httpx.Response(self.status, json=body, headers=self.headers)


def _manager(endpoint, clock):
    config = ClientConfig(base_url="https://chat.test", refresh_margin=60)
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return CredentialManager(SESSION_TOKEN, config, http_client=client, clock=clock)


@pytest.mark.asyncio
async def test_refresh_then_cache():
    clock = FakeClock()
    endpoint = SessionEndpoint(clock)
    manager = _manager(endpoint, clock)

    first = await manager.ensure_valid()
    second = await manager.ensure_valid()

    assert first.token == "access-1"
    assert second == first
    assert first.expires_at > clock()
    assert first.authorization == "Bearer access-1"
    assert endpoint.calls == 1
    assert endpoint.cookies[0] == f"__Secure-next-auth.session-token={SESSION_TOKEN}"
    assert manager.credential.short_lived_token == "access-1"


@pytest.mark.asyncio
async def test_refresh_inside_safety_margin():
    clock = FakeClock()
    endpoint = SessionEndpoint(clock, lifetime=timedelta(minutes=10))
    manager = _manager(endpoint, clock)

    await manager.ensure_valid()
    clock.advance(minutes=8)
    assert (await manager.ensure_valid()).token == "access-1"
    clock.advance(seconds=90)
    token = await manager.ensure_valid()

    assert token.token == "access-2"
    assert endpoint.calls == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    clock = FakeClock()
    endpoint = SessionEndpoint(clock, delay=0.05)
    manager = _manager(endpoint, clock)

    tokens = await asyncio.gather(*(manager.ensure_valid() for _ in range(10)))
    assert endpoint.calls == 1
    assert {t.token for t in tokens} == {"access-1"}

    clock.advance(hours=2)
    tokens = await asyncio.gather(*(manager.ensure_valid() for _ in range(10)))
    assert endpoint.calls == 2
    assert {t.token for t in tokens} == {"access-2"}
    assert manager.refresh_count == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_failed_refresh():
    clock = FakeClock()
    endpoint = SessionEndpoint(clock, status=401, body={"detail": "unauthorized"}, delay=0.05)
    manager = _manager(endpoint, clock)

    results = await asyncio.gather(*(manager.ensure_valid() for _ in range(10)), return_exceptions=True)

    assert endpoint.calls == 1
    assert len(results) == 10
    assert all(isinstance(r, AuthError) for r in results)
    assert {r.code for r in results} == {"SESSION_REJECTED"}

    # 失败后不缓存结果，下一次调用重新交换
    with pytest.raises(AuthError):
        await manager.ensure_valid()
    assert endpoint.calls == 2


@pytest.mark.asyncio
async def test_rejected_session_raises_auth_error():
    clock = FakeClock()
    manager = _manager(SessionEndpoint(clock, status=401, body={"detail": "unauthorized"}), clock)
    with pytest.raises(AuthError) as exc:
        await manager.ensure_valid()
    assert exc.value.code == "SESSION_REJECTED"
    assert exc.value.http_status == 401


@pytest.mark.asyncio
async def test_empty_session_raises_auth_error():
    clock = FakeClock()
    manager = _manager(SessionEndpoint(clock, body={}), clock)
    with pytest.raises(AuthError) as exc:
        await manager.ensure_valid()
    assert exc.value.code == "SESSION_EXPIRED"


@pytest.mark.asyncio
async def test_already_expired_token_is_rejected():
    clock = FakeClock()
    body = {"accessToken": "stale", "expires": "2023-12-31T23:59:00Z"}
    manager = _manager(SessionEndpoint(clock, body=body), clock)
    with pytest.raises(AuthError):
        await manager.ensure_valid()
    assert manager.credential.short_lived_token is None


@pytest.mark.asyncio
async def test_server_error_is_api_error():
    clock = FakeClock()
    manager = _manager(SessionEndpoint(clock, status=502, body={"detail": "bad gateway"}), clock)
    with pytest.raises(ApiError) as exc:
        await manager.ensure_valid()
    assert exc.value.http_status == 502


@pytest.mark.asyncio
async def test_connection_failure_raises_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    clock = FakeClock()
    manager = _manager(handler, clock)
    with pytest.raises(NetworkError) as exc:
        await manager.ensure_valid()
    assert exc.value.code == "NETWORK_ERROR"


@pytest.mark.asyncio
async def test_epoch_expiry_is_accepted():
    clock = FakeClock()
    expires = (clock() + timedelta(hours=1)).timestamp()
    manager = _manager(SessionEndpoint(clock, body={"accessToken": "tok", "expiresAt": expires}), clock)
    token = await manager.ensure_valid()
    assert token.expires_at == clock() + timedelta(hours=1)


@pytest.mark.asyncio
async def test_epoch_millis_expiry_is_accepted():
    clock = FakeClock()
    expires_ms = int((clock() + timedelta(hours=1)).timestamp() * 1000)
    manager = _manager(SessionEndpoint(clock, body={"accessToken": "tok", "expires": expires_ms}), clock)
    token = await manager.ensure_valid()
    assert token.expires_at == clock() + timedelta(hours=1)


@pytest.mark.asyncio
async def test_out_of_range_expiry_is_malformed_session():
    clock = FakeClock()
    manager = _manager(SessionEndpoint(clock, body={"accessToken": "tok", "expires": 10**30}), clock)
    with pytest.raises(AuthError) as exc:
        await manager.ensure_valid()
    assert exc.value.code == "MALFORMED_SESSION"
    assert manager.credential.short_lived_token is None


@pytest.mark.asyncio
async def test_expires_at_wins_over_expires():
    clock = FakeClock()
    body = {
        "accessToken": "tok",
        "expires": (clock() + timedelta(days=30)).isoformat(),
        "expiresAt": (clock() + timedelta(hours=2)).isoformat(),
    }
    manager = _manager(SessionEndpoint(clock, body=body), clock)
    token = await manager.ensure_valid()
    assert token.expires_at == clock() + timedelta(hours=2)


@pytest.mark.asyncio
async def test_missing_expiry_uses_default_lifetime():
    clock = FakeClock()
    manager = _manager(SessionEndpoint(clock, body={"accessToken": "tok"}), clock)
    token = await manager.ensure_valid()
    assert token.expires_at == clock() + timedelta(hours=1)


@pytest.mark.asyncio
async def test_rotated_session_cookie_is_adopted():
    clock = FakeClock()
    headers = {"set-cookie": "__Secure-next-auth.session-token=rotated-token-456; Path=/; Secure; HttpOnly"}
    endpoint = SessionEndpoint(clock, headers=headers)
    manager = _manager(endpoint, clock)

    await manager.ensure_valid()
    assert manager.credential.long_lived_token == "rotated-token-456"

    manager.invalidate()
    await manager.ensure_valid()
    assert endpoint.cookies[-1] == "__Secure-next-auth.session-token=rotated-token-456"


@pytest.mark.asyncio
async def test_invalidate_forces_refresh():
    clock = FakeClock()
    endpoint = SessionEndpoint(clock)
    manager = _manager(endpoint, clock)

    await manager.ensure_valid()
    manager.invalidate()
    token = await manager.ensure_valid()

    assert token.token == "access-2"
    assert endpoint.calls == 2
