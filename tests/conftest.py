import os

# Settings are read at import time; point everything at test doubles first.
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SUPABASE_URL"] = "http://auth.test"
os.environ["SUPABASE_ANON_KEY"] = "anon-key"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "service-role-key"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["INFERENCE_URL"] = "http://inference.test/chat"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("DEFAULT_INFLUENCER_ID", None)

import json
import time
import uuid

import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from persona_chat.main import app
from persona_chat.db.models import Base, ChatMessage, Conversation, Influencer, Plan, User
from persona_chat.db.session import get_db
from persona_chat.services.inference import InferenceClient, get_inference_client

JWT_SECRET = "test-jwt-secret"
INFLUENCER_ID = "inf-aria"
USER_ID = "user-1"


def make_token(user_id: str = USER_ID, email: str | None = None, audience: str = "authenticated",
               secret: str = JWT_SECRET, expires_in: int = 3600) -> str:
    claims = {
        "sub": user_id,
        "email": email or f"{user_id}@example.com",
        "aud": audience,
        "role": "authenticated",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id: str = USER_ID) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class InferenceStub:
    """Inference service double. Records every request payload."""

    def __init__(self):
        self.payloads: list[dict] = []
        self.reply: dict | None = {"response": "Hey you! Tell me more."}
        self.handler = None

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        if self.handler is not None:
            return await self.handler(request)
        return httpx.Response(200, json=self.reply)

    def client(self) -> InferenceClient:
        return InferenceClient(
            base_url="http://inference.test/chat",
            creator_id="creator-1",
            transport=httpx.MockTransport(self._handle),
        )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def inference():
    return InferenceStub()


@pytest_asyncio.fixture
async def client(session_factory, inference):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_inference_client] = inference.client
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def influencer(db):
    inf = Influencer(
        id=INFLUENCER_ID,
        handle="aria",
        display_name="Aria",
        prompt="You are Aria, a friendly companion.",
        model_preset={"temperature": 0.8},
        is_active=True,
    )
    db.add(inf)
    await db.commit()
    return inf


@pytest_asyncio.fixture
async def user(db):
    u = User(id=USER_ID, email=f"{USER_ID}@example.com", username="fan1", display_name="Fan")
    db.add(u)
    await db.commit()
    return u


@pytest_asyncio.fixture
async def plans(db, influencer):
    basic = Plan(id="plan-basic", influencer_id=influencer.id, name="Basic", price_cents=999, access_level="basic",
                 stripe_price_id="price_basic_monthly", features=["Text replies"])
    vip = Plan(id="plan-vip", influencer_id=influencer.id, name="VIP", price_cents=2999, access_level="vip")
    custom = Plan(id="plan-custom", influencer_id=influencer.id, name="Custom", price_cents=500,
                  access_level="basic", tokens_per_period=42, is_active=False)
    db.add_all([basic, vip, custom])
    await db.commit()
    return {"basic": basic, "vip": vip, "custom": custom}


@pytest.fixture
def set_tokens(session_factory):
    async def _set(tokens: int, user_id: str = USER_ID, influencer_id: str = INFLUENCER_ID) -> str:
        async with session_factory() as s:
            conv = await s.scalar(select(Conversation).where(
                Conversation.user_id == user_id, Conversation.influencer_id == influencer_id,
            ))
            if conv is None:
                conv = Conversation(id=str(uuid.uuid4()), user_id=user_id, influencer_id=influencer_id, tokens=tokens)
                s.add(conv)
            else:
                conv.tokens = tokens
            await s.commit()
            return conv.id
    return _set


@pytest.fixture
def get_tokens(session_factory):
    async def _get(user_id: str = USER_ID, influencer_id: str = INFLUENCER_ID) -> int | None:
        async with session_factory() as s:
            return await s.scalar(select(Conversation.tokens).where(
                Conversation.user_id == user_id, Conversation.influencer_id == influencer_id,
            ))
    return _get


@pytest.fixture
def all_messages(session_factory):
    async def _all() -> list[ChatMessage]:
        async with session_factory() as s:
            result = await s.execute(select(ChatMessage).order_by(ChatMessage.created_at, ChatMessage.id))
            return list(result.scalars().all())
    return _all
