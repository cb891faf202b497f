import json

import httpx
import pytest
from sqlalchemy import select

from persona_chat.db.models import User
from persona_chat.main import app
from persona_chat.services.auth_provider import AuthProvider, get_auth_provider

from conftest import INFLUENCER_ID, USER_ID, auth_headers, make_token


class ProviderStub:
    """Auth provider double; records (method, path, body) per call."""

    def __init__(self):
        self.calls: list[tuple[str, str, dict | None]] = []
        self.signup_user_id = "user-2"
        self.reject_signin = False

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.calls.append((request.method, path, body))
        if path == "/auth/v1/signup":
            return httpx.Response(200, json={
                "access_token": make_token(self.signup_user_id),
                "user": {"id": self.signup_user_id, "email": body["email"]},
            })
        if path == "/auth/v1/token":
            if self.reject_signin:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})
            return httpx.Response(200, json={
                "access_token": make_token(USER_ID),
                "refresh_token": "refresh-1",
                "expires_in": 3600,
                "token_type": "bearer",
                "user": {"id": USER_ID},
            })
        if path == "/auth/v1/logout":
            return httpx.Response(204)
        if path.startswith("/auth/v1/admin/users/"):
            return httpx.Response(200, json={})
        return httpx.Response(404, json={"msg": "not found"})

    def provider(self) -> AuthProvider:
        return AuthProvider("http://auth.test", "anon-key", "service-role-key", transport=httpx.MockTransport(self._handle))


@pytest.fixture
def provider(client):
    stub = ProviderStub()
    app.dependency_overrides[get_auth_provider] = stub.provider
    return stub


async def test_signup_creates_profile(client, provider, session_factory):
    r = await client.post("/api/auth/signup", json={
        "email": "new@example.com", "password": "secret123", "username": "newfan", "display_name": "New Fan",
    })

    assert r.status_code == 200, r.text
    assert r.json()["user_id"] == "user-2"
    assert r.json()["access_token"]
    assert provider.calls[0][2]["data"] == {"username": "newfan", "display_name": "New Fan"}
    async with session_factory() as s:
        u = await s.get(User, "user-2")
    assert u.username == "newfan"
    assert u.email == "new@example.com"


async def test_signup_profile_failure_removes_provider_account(client, provider, user, session_factory):
    r = await client.post("/api/auth/signup", json={
        "email": "clash@example.com", "password": "secret123", "username": "fan1",
    })

    assert r.status_code == 500
    assert r.json()["detail"]["error"] == "INTERNAL"
    assert ("DELETE", "/auth/v1/admin/users/user-2", None) in provider.calls
    async with session_factory() as s:
        assert await s.get(User, "user-2") is None


async def test_signin_returns_session(client, provider):
    r = await client.post("/api/auth/signin", json={"email": "fan@example.com", "password": "secret123"})

    assert r.status_code == 200
    assert r.json()["refresh_token"] == "refresh-1"
    assert r.json()["user"] == {"id": USER_ID}


async def test_signin_rejected_by_provider(client, provider):
    provider.reject_signin = True

    r = await client.post("/api/auth/signin", json={"email": "fan@example.com", "password": "nope123"})

    assert r.status_code == 400
    assert r.json()["detail"]["message"] == "Invalid login credentials"


async def test_signout(client, provider, user):
    r = await client.post("/api/auth/signout", headers=auth_headers())

    assert r.status_code == 200
    assert provider.calls[-1][:2] == ("POST", "/auth/v1/logout")


async def test_profile_is_created_on_first_authenticated_request(client, session_factory):
    r = await client.get("/api/users/me", headers=auth_headers("user-9"))

    assert r.status_code == 200
    assert r.json()["id"] == "user-9"
    assert r.json()["email"] == "user-9@example.com"
    async with session_factory() as s:
        assert await s.get(User, "user-9") is not None


async def test_update_me(client, user, session_factory):
    r = await client.patch("/api/users/me", json={"display_name": "Renamed", "username": "fan-renamed"},
                           headers=auth_headers())

    assert r.status_code == 200
    assert r.json()["display_name"] == "Renamed"
    async with session_factory() as s:
        assert (await s.get(User, USER_ID)).username == "fan-renamed"


async def test_update_me_rejects_taken_username(client, user, db):
    db.add(User(id="user-3", email="other@example.com", username="taken"))
    await db.commit()

    r = await client.patch("/api/users/me", json={"username": "taken"}, headers=auth_headers())

    assert r.status_code == 400


async def test_current_influencer(client, influencer):
    r = await client.get("/api/influencer/current")

    assert r.status_code == 200
    assert r.json()["id"] == INFLUENCER_ID
    assert r.json()["display_name"] == "Aria"
    assert "prompt" not in r.json()


async def test_current_influencer_missing(client):
    r = await client.get("/api/influencer/current")
    assert r.status_code == 404


async def test_plans_list_active_with_token_grants(client, plans):
    r = await client.get("/api/plans", params={"influencerId": INFLUENCER_ID})

    assert r.status_code == 200
    assert [(p["id"], p["tokens_per_period"]) for p in r.json()] == [("plan-basic", 150), ("plan-vip", 3000)]
    assert r.json()[0]["features"] == ["Text replies"]


async def test_balance_before_and_after_first_message(client, influencer, inference):
    before = await client.get("/api/tokens/balance", params={"influencerId": INFLUENCER_ID}, headers=auth_headers())
    assert before.json() == {"influencerId": INFLUENCER_ID, "tokens": 0, "planName": None, "hasConversation": False}

    await client.post("/api/post-message", json={"influencerId": INFLUENCER_ID, "content": "hi"}, headers=auth_headers())

    after = await client.get("/api/tokens/balance", params={"influencerId": INFLUENCER_ID}, headers=auth_headers())
    assert after.json()["tokens"] == 99
    assert after.json()["hasConversation"] is True


async def test_subscriptions_requires_auth(client):
    r = await client.get("/api/subscriptions")
    assert r.status_code == 401


async def test_subscriptions_empty(client, user):
    r = await client.get("/api/subscriptions", headers=auth_headers())
    assert r.json() == []


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
