import asyncio

import httpx
import pytest

from persona_chat.client.api import ChatApi
from persona_chat.client.cache import ChatCache
from persona_chat.client.session import SessionClient
from persona_chat.client.errors import ApiError

P, U = "inf-aria", "user-1"


def msg(id, sender="user", content=None):
    return {"id": id, "sender": sender, "content": content or f"m{id}", "type": "text"}


class FakeApi:
    """Serves a stored ascending thread newest-first, like the server does."""

    def __init__(self, messages=None):
        self.messages = list(messages or [])
        self.get_calls = 0
        self.init_calls = 0
        self.fail = False
        self.gate: asyncio.Event | None = None

    async def get_messages(self, influencer_id, limit=20, offset=0):
        self.get_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ApiError(500, "boom")
        newest_first = list(reversed(self.messages))
        return newest_first[offset:offset + limit]

    async def initialize_conversation(self, influencer_id):
        self.init_calls += 1
        return {"conversationId": "c1", "tokens": 100, "isNew": True}


async def test_get_thread_returns_chronological_order():
    api = FakeApi([msg(i) for i in range(1, 6)])
    cache = ChatCache(api)

    thread = await cache.get_thread(P, U, limit=3)

    assert [m["id"] for m in thread] == [3, 4, 5]
    assert cache.peek_thread(P, U) == thread


async def test_peek_is_absent_before_load():
    assert ChatCache(FakeApi()).peek_thread(P, U) is None


async def test_concurrent_get_thread_coalesces_into_one_fetch():
    api = FakeApi([msg(1), msg(2)])
    api.gate = asyncio.Event()
    cache = ChatCache(api)

    first = asyncio.ensure_future(cache.get_thread(P, U))
    second = asyncio.ensure_future(cache.get_thread(P, U))
    await asyncio.sleep(0)
    api.gate.set()
    a, b = await asyncio.gather(first, second)

    assert api.get_calls == 1
    assert a == b == [msg(1), msg(2)]


async def test_cached_thread_is_not_refetched():
    api = FakeApi([msg(1)])
    cache = ChatCache(api)
    await cache.get_thread(P, U)
    await cache.get_thread(P, U)
    assert api.get_calls == 1


async def test_empty_thread_initializes_conversation_once():
    api = FakeApi([])
    cache = ChatCache(api)

    assert await cache.get_thread(P, U) == []
    cache._threads.clear()
    await cache.get_thread(P, U)

    assert api.init_calls == 1


async def test_fetch_failure_caches_empty_thread():
    api = FakeApi([msg(1)])
    api.fail = True
    cache = ChatCache(api)

    assert await cache.get_thread(P, U) == []
    assert cache.peek_thread(P, U) == []
    assert api.init_calls == 0


async def test_load_more_on_empty_cache_matches_first_page():
    stored = [msg(i) for i in range(1, 30)]
    first_page = await ChatCache(FakeApi(stored)).get_thread(P, U, limit=10)
    more = await ChatCache(FakeApi(stored)).load_more_messages(P, U, limit=10)
    assert more == first_page


async def test_load_more_prepends_older_page():
    api = FakeApi([msg(i) for i in range(1, 8)])
    cache = ChatCache(api)
    await cache.get_thread(P, U, limit=3)

    thread = await cache.load_more_messages(P, U, limit=3)

    assert [m["id"] for m in thread] == [2, 3, 4, 5, 6, 7]


async def test_load_more_failure_keeps_thread():
    api = FakeApi([msg(1), msg(2)])
    cache = ChatCache(api)
    await cache.get_thread(P, U)
    api.fail = True
    assert await cache.load_more_messages(P, U) == [msg(1), msg(2)]


def test_append_then_replace_optimistic_leaves_one_of_each():
    cache = ChatCache(FakeApi())
    cache.append_to_thread(P, U, msg("optimistic_1", content="hi"))

    cache.replace_optimistic(P, U, "optimistic_1", [msg(10, content="hi"), msg(11, "influencer", "hello!")])

    thread = cache.peek_thread(P, U)
    assert [m["id"] for m in thread] == [10, 11]
    assert [m["sender"] for m in thread] == ["user", "influencer"]


def test_replace_optimistic_ignores_messages_already_fetched():
    cache = ChatCache(FakeApi())
    cache.append_to_thread(P, U, msg("optimistic_1"))
    # The authoritative copy arrived first (e.g. via a refetch).
    cache.append_to_thread(P, U, msg(10))

    cache.replace_optimistic(P, U, "optimistic_1", [msg(10), msg(11, "influencer")])

    assert [m["id"] for m in cache.peek_thread(P, U)] == [10, 11]


def test_replace_keeps_position_when_later_messages_exist():
    cache = ChatCache(FakeApi())
    for m in (msg(1), msg("temp_user_a"), msg("temp_ai_a", "influencer"), msg("optimistic_2")):
        cache.append_to_thread(P, U, m)

    cache.replace_optimistic(P, U, "temp_user_a", [msg(2)])
    cache.replace_optimistic(P, U, "temp_ai_a", [msg(3, "influencer")])

    assert [m["id"] for m in cache.peek_thread(P, U)] == [1, 2, 3, "optimistic_2"]


def test_append_dedupes_by_id():
    cache = ChatCache(FakeApi())
    cache.append_to_thread(P, U, msg(1, content="old"))
    cache.append_to_thread(P, U, msg(1, content="new"))
    assert cache.peek_thread(P, U) == [msg(1, content="new")]


def test_remove_message_by_id():
    cache = ChatCache(FakeApi())
    cache.append_to_thread(P, U, msg(1))
    cache.append_to_thread(P, U, msg("optimistic_x"))
    cache.remove_message_by_id(P, U, "optimistic_x")
    assert cache.peek_thread(P, U) == [msg(1)]


def test_subscribers_see_every_mutation_until_unsubscribed():
    cache = ChatCache(FakeApi())
    seen_a, seen_b = [], []
    unsubscribe_a = cache.subscribe_thread(P, U, seen_a.append)
    unsubscribe_b = cache.subscribe_thread(P, U, seen_b.append)

    cache.append_to_thread(P, U, msg(1))
    unsubscribe_a()
    cache.append_to_thread(P, U, msg(2))

    assert seen_a == [[msg(1)]]
    assert seen_b == [[msg(1)], [msg(1), msg(2)]]
    unsubscribe_b()
    assert cache.listener_count(P, U) == 0
    assert (P, U) not in cache._listeners


def test_failing_subscriber_does_not_break_others():
    cache = ChatCache(FakeApi())
    seen = []

    def broken(_):
        raise RuntimeError("ui crashed")

    cache.subscribe_thread(P, U, broken)
    cache.subscribe_thread(P, U, seen.append)
    cache.append_to_thread(P, U, msg(1))
    assert seen == [[msg(1)]]


def test_threads_are_keyed_per_persona_and_user():
    cache = ChatCache(FakeApi())
    cache.append_to_thread(P, U, msg(1))
    assert cache.peek_thread(P, "someone-else") is None
    assert cache.peek_thread("other-persona", U) is None


async def test_dispose_clears_state_and_rejects_reads():
    cache = ChatCache(FakeApi([msg(1)]))
    await cache.get_thread(P, U)
    cache.subscribe_thread(P, U, lambda _: None)

    cache.dispose()

    assert cache.peek_thread(P, U) is None
    assert cache.listener_count(P, U) == 0
    with pytest.raises(RuntimeError):
        await cache.get_thread(P, U)


def _api_answering(handler) -> ChatApi:
    session = SessionClient("http://api.test", transport=httpx.MockTransport(handler))
    session.set_session("token", user={"id": U})
    return ChatApi(session)


async def test_non_json_success_page_becomes_empty_thread():
    api = _api_answering(lambda request: httpx.Response(200, text="<html>captive portal</html>"))
    cache = ChatCache(api)

    assert await cache.get_thread(P, U) == []
    assert await cache.load_more_messages(P, U) == []


async def test_wrong_shape_page_becomes_empty_thread():
    api = _api_answering(lambda request: httpx.Response(200, json={"items": []}))

    with pytest.raises(ApiError):
        await api.get_messages(P)
    assert await ChatCache(api).get_thread(P, U) == []
