import pytest
from fastapi import HTTPException
from starlette.requests import Request

from persona_chat.core.config import settings
from persona_chat.utils import rate_limiter
from persona_chat.utils.rate_limiter import get_user_key, rate_limit


def make_request(headers=None, client=("10.0.0.1", 1234)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/post-message",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


@rate_limit(max_requests=2, window_seconds=60, key_prefix="ratelimit:test")
async def endpoint(request: Request):
    return {"ok": True}


@pytest.fixture
def enabled(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)


def test_key_prefers_authenticated_user():
    request = make_request()
    request.state.user = type("U", (), {"id": "user-1"})()
    assert get_user_key(request) == "user:user-1"


def test_key_falls_back_to_forwarded_ip():
    request = make_request(headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
    assert get_user_key(request) == "ip:203.0.113.7"


async def test_disabled_limiter_never_touches_redis(monkeypatch):
    async def boom(*args, **kwargs):
        raise AssertionError("redis used")

    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
    monkeypatch.setattr(rate_limiter, "check_rate_limit", boom)
    assert await endpoint(request=make_request()) == {"ok": True}


async def test_fails_open_when_redis_is_down(enabled, monkeypatch):
    async def unreachable(*args, **kwargs):
        raise ConnectionError("redis down")

    monkeypatch.setattr(rate_limiter, "check_rate_limit", unreachable)
    assert await endpoint(request=make_request()) == {"ok": True}


async def test_over_limit_is_rejected(enabled, monkeypatch):
    keys = []

    async def limited(key, max_requests, window_seconds):
        keys.append(key)
        return False, 17

    monkeypatch.setattr(rate_limiter, "check_rate_limit", limited)
    with pytest.raises(HTTPException) as exc:
        await endpoint(request=make_request())

    assert exc.value.status_code == 429
    assert exc.value.headers["Retry-After"] == "17"
    assert keys == ["ratelimit:test:ip:10.0.0.1"]
