from sqlalchemy import select

from persona_chat.db.models import TokenTransaction

from conftest import INFLUENCER_ID, auth_headers


async def send(client, content):
    r = await client.post("/api/post-message", json={"influencerId": INFLUENCER_ID, "content": content},
                          headers=auth_headers())
    assert r.status_code == 200
    return r.json()


async def test_initialize_is_idempotent(client, influencer):
    first = await client.post("/api/conversation/initialize", json={"influencerId": INFLUENCER_ID},
                              headers=auth_headers())
    second = await client.post("/api/conversation/initialize", json={"influencerId": INFLUENCER_ID},
                               headers=auth_headers())

    assert first.json()["isNew"] is True
    assert first.json()["tokens"] == 100
    assert second.json()["isNew"] is False
    assert second.json()["conversationId"] == first.json()["conversationId"]


async def test_messages_page_newest_first(client, influencer):
    for text in ("a", "b", "c"):
        await send(client, text)

    page = (await client.get(f"/api/conversations/{INFLUENCER_ID}/messages",
                             params={"limit": 4}, headers=auth_headers())).json()
    rest = (await client.get(f"/api/conversations/{INFLUENCER_ID}/messages",
                             params={"limit": 4, "offset": 4}, headers=auth_headers())).json()

    assert page["hasMore"] is True
    assert [m["sender"] for m in page["messages"]] == ["influencer", "user", "influencer", "user"]
    assert [m["content"] for m in page["messages"] if m["sender"] == "user"] == ["c", "b"]
    assert rest["hasMore"] is False
    assert [m["content"] for m in rest["messages"]][-1] == "a"


async def test_list_conversations_and_mark_read(client, influencer):
    await send(client, "hi")
    await send(client, "again")

    convs = (await client.get("/api/conversations", headers=auth_headers())).json()
    assert len(convs) == 1
    assert convs[0]["influencerName"] == "Aria"
    assert convs[0]["tokens"] == 98
    assert convs[0]["unreadCount"] == 2
    assert convs[0]["lastMessage"]["sender"] == "influencer"

    marked = await client.post(f"/api/conversations/{INFLUENCER_ID}/mark-read", headers=auth_headers())
    assert marked.json() == {"ok": True, "marked": 2}

    convs = (await client.get("/api/conversations", headers=auth_headers())).json()
    assert convs[0]["unreadCount"] == 0


async def test_delete_history_keeps_balance(client, influencer, get_tokens, all_messages):
    await send(client, "forget me")

    r = await client.delete("/api/chat/history", headers=auth_headers())

    assert r.json() == {"ok": True, "deleted": 2}
    assert await all_messages() == []
    assert await get_tokens() == 99


async def test_clearing_history_does_not_restore_tokens(client, influencer, set_tokens, get_tokens, all_messages):
    await send(client, "last paid message")
    await set_tokens(0)
    blocked = await client.post("/api/post-message", json={"influencerId": INFLUENCER_ID, "content": "more"},
                                headers=auth_headers())
    assert blocked.status_code == 402

    r = await client.delete("/api/chat/history", params={"resetTokens": "true"}, headers=auth_headers())

    assert r.json() == {"ok": True, "deleted": 2}
    assert await all_messages() == []
    assert await get_tokens() == 0
    again = await client.post("/api/post-message", json={"influencerId": INFLUENCER_ID, "content": "more"},
                              headers=auth_headers())
    assert again.status_code == 402
    init = await client.post("/api/conversation/initialize", json={"influencerId": INFLUENCER_ID},
                             headers=auth_headers())
    assert init.json()["tokens"] == 0
    assert init.json()["isNew"] is False


async def test_clearing_history_keeps_grant_ledger(client, influencer, session_factory):
    await send(client, "hi")

    await client.delete("/api/chat/history", headers=auth_headers())

    async with session_factory() as s:
        kinds = (await s.execute(select(TokenTransaction.kind))).scalars().all()
    assert kinds == ["debit"]
