from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from persona_chat.db.models import ChatMessage, Conversation, TokenTransaction
from persona_chat.services import chat_service

from conftest import INFLUENCER_ID, auth_headers


async def send_fast(client, content="quick one", **extra):
    body = {"influencerId": INFLUENCER_ID, "content": content, **extra}
    return await client.post("/api/post-message-fast", json=body, headers=auth_headers())


async def save(client, turn):
    body = {"influencerId": INFLUENCER_ID, "userMessage": turn["userMessage"], "aiMessage": turn["aiMessage"]}
    return await client.post("/api/save-messages-background", json=body, headers=auth_headers())


async def test_fast_send_returns_provisional_messages_and_writes_nothing(client, influencer, session_factory, inference):
    r = await send_fast(client, "hi fast")

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["isFastMode"] is True
    assert body["userMessage"]["id"].startswith("temp_user_")
    assert body["aiMessage"]["id"].startswith("temp_ai_")
    assert body["userMessage"]["is_temp"] is True
    assert body["aiMessage"]["content"] == "Hey you! Tell me more."

    # No prior conversation: the unsaved message is counted.
    payload = inference.payloads[-1]
    assert payload["msgs_cnt_by_user"] == 1
    assert payload["msgs_cnt_total"] == 1
    assert payload["chat_history"] == [["user", "hi fast"]]

    async with session_factory() as s:
        assert await s.scalar(select(func.count(ChatMessage.id))) == 0
        assert await s.scalar(select(func.count(Conversation.id))) == 0


async def test_background_save_persists_and_debits_once(client, influencer, all_messages, get_tokens, session_factory):
    turn = (await send_fast(client, "save me")).json()

    r = await save(client, turn)

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert "duplicate" not in body
    assert isinstance(body["userMessage"]["id"], int)
    assert body["userMessage"]["is_temp"] is False
    stored = await all_messages()
    assert [(m.sender, m.content) for m in stored] == [("user", "save me"), ("influencer", "Hey you! Tell me more.")]
    assert await get_tokens() == 99

    again = await save(client, turn)

    assert again.json()["success"] is True
    assert again.json()["duplicate"] is True
    assert again.json()["userMessage"]["id"] == body["userMessage"]["id"]
    assert len(await all_messages()) == 2
    assert await get_tokens() == 99
    async with session_factory() as s:
        assert await s.scalar(select(func.count(TokenTransaction.id))) == 1


async def test_fast_send_uses_saved_history(client, influencer, inference):
    first = (await send_fast(client, "first")).json()
    await save(client, first)

    await send_fast(client, "second")

    payload = inference.payloads[-1]
    assert payload["chat_history"] == [["user", "first"], ["assistant", "Hey you! Tell me more."], ["user", "second"]]
    assert payload["msgs_cnt_by_user"] == 2
    assert payload["msgs_cnt_total"] == 3


async def test_fast_send_with_no_tokens_is_payment_required(client, influencer, set_tokens, inference):
    await set_tokens(0)

    r = await send_fast(client)

    assert r.status_code == 402
    assert inference.payloads == []


async def test_background_save_for_unknown_influencer_reports_failure(client, influencer, all_messages):
    turn = (await send_fast(client)).json()
    body = {"influencerId": "nobody", "userMessage": turn["userMessage"], "aiMessage": turn["aiMessage"]}

    r = await client.post("/api/save-messages-background", json=body, headers=auth_headers())

    assert r.status_code == 200
    assert r.json()["success"] is False
    assert r.json()["error"]
    assert await all_messages() == []


async def test_save_retried_after_partial_failure_is_paid_once(client, influencer, monkeypatch, all_messages,
                                                               get_tokens, session_factory):
    turn = (await send_fast(client, "half saved")).json()
    real_add = chat_service.add_message
    failures = {"left": 1}

    async def flaky_add(db, conversation, *, sender, **kwargs):
        if sender == "influencer" and failures["left"]:
            failures["left"] -= 1
            raise OperationalError("INSERT INTO chat_messages", {}, Exception("connection lost"))
        return await real_add(db, conversation, sender=sender, **kwargs)

    monkeypatch.setattr(chat_service, "add_message", flaky_add)

    first = await save(client, turn)
    assert first.json()["success"] is False
    assert [m.sender for m in await all_messages()] == ["user"]
    assert await get_tokens() == 100

    second = await save(client, turn)
    assert second.json()["success"] is True
    assert len(await all_messages()) == 2
    assert await get_tokens() == 99

    third = await save(client, turn)
    assert third.json()["duplicate"] is True
    assert await get_tokens() == 99
    async with session_factory() as s:
        refs = (await s.execute(select(TokenTransaction.reference))).scalars().all()
    assert refs == [f"save:{turn['userMessage']['id']}"]


async def test_save_accepts_mixed_naive_and_aware_timestamps(client, influencer, all_messages):
    turn = (await send_fast(client, "what time is it")).json()
    turn["userMessage"]["created_at"] = "2026-01-01T00:00:00"
    turn["aiMessage"]["created_at"] = "2026-01-01T00:00:05+00:00"

    r = await save(client, turn)

    assert r.status_code == 200
    assert r.json()["success"] is True
    assert [m.sender for m in await all_messages()] == ["user", "influencer"]
