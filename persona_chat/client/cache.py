"""
Per-session conversation cache.

Threads are keyed by (persona id, user id) and held in chronological order.
The server pages newest-first; the reversal into display order happens here
and nowhere else. Network failures never escape: reads fall back to an empty
thread.
"""

import asyncio
import logging
from typing import Callable, Optional

from .api import ChatApi
from .errors import ApiError, NotSignedIn

log = logging.getLogger(__name__)

Listener = Callable[[list[dict]], None]
ThreadKey = tuple[str, str]


def _dedupe(messages: list[dict]) -> list[dict]:
    seen: set = set()
    out = []
    for m in messages:
        if m["id"] in seen:
            continue
        seen.add(m["id"])
        out.append(m)
    return out


class ChatCache:
    def __init__(self, api: ChatApi):
        self._api = api
        self._threads: dict[ThreadKey, list[dict]] = {}
        self._pending: dict[ThreadKey, asyncio.Task] = {}
        self._listeners: dict[ThreadKey, list[Listener]] = {}
        self._initialized: set[ThreadKey] = set()
        self._disposed = False

    def peek_thread(self, persona_id: str, user_id: str) -> Optional[list[dict]]:
        thread = self._threads.get((persona_id, user_id))
        return list(thread) if thread is not None else None

    async def get_thread(self, persona_id: str, user_id: str, limit: int = 20) -> list[dict]:
        """
        Cached thread, or the newest ``limit`` messages. Concurrent callers for
        the same key share one fetch.
        """
        self._check_alive()
        key = (persona_id, user_id)
        if key in self._threads:
            return list(self._threads[key])

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_first_page(key, limit))
            self._pending[key] = task
        return list(await asyncio.shield(task))

    async def _load_first_page(self, key: ThreadKey, limit: int) -> list[dict]:
        persona_id, _ = key
        try:
            try:
                page = await self._api.get_messages(persona_id, limit=limit, offset=0)
            except (ApiError, NotSignedIn) as e:
                log.warning("cache.fetch.failed persona=%s err=%s", persona_id, e)
                messages: list[dict] = []
            else:
                messages = _dedupe(list(reversed(page)))
                if not messages and key not in self._initialized:
                    self._initialized.add(key)
                    try:
                        await self._api.initialize_conversation(persona_id)
                    except (ApiError, NotSignedIn) as e:
                        log.warning("cache.initialize.failed persona=%s err=%s", persona_id, e)

            if not self._disposed:
                self._threads[key] = messages
                self._notify(key)
            return messages
        finally:
            self._pending.pop(key, None)

    async def load_more_messages(self, persona_id: str, user_id: str, limit: int = 20) -> list[dict]:
        """
        Prepend the next older page, using the cached length as offset.
        Returns the full thread. Offsets shift if messages are sent meanwhile.
        """
        self._check_alive()
        key = (persona_id, user_id)
        current = self._threads.get(key, [])
        try:
            page = await self._api.get_messages(persona_id, limit=limit, offset=len(current))
        except (ApiError, NotSignedIn) as e:
            log.warning("cache.load_more.failed persona=%s err=%s", persona_id, e)
            return list(current)

        current = self._threads.get(key, [])
        known = {m["id"] for m in current}
        older = [m for m in reversed(page) if m["id"] not in known]
        self._threads[key] = _dedupe(older + current)
        self._notify(key)
        return list(self._threads[key])

    def append_to_thread(self, persona_id: str, user_id: str, message: dict) -> None:
        key = (persona_id, user_id)
        thread = list(self._threads.get(key, []))
        for i, existing in enumerate(thread):
            if existing["id"] == message["id"]:
                thread[i] = message
                break
        else:
            thread.append(message)
        self._threads[key] = thread
        self._notify(key)

    def replace_optimistic(self, persona_id: str, user_id: str, temp_id: str, messages: list[dict]) -> None:
        """Swap the provisional message ``temp_id`` for ``messages`` in place."""
        key = (persona_id, user_id)
        thread = self._threads.get(key, [])
        incoming = _dedupe(messages)
        incoming_ids = {m["id"] for m in incoming}

        position = next((i for i, m in enumerate(thread) if m["id"] == temp_id), len(thread))
        before = [m for m in thread[:position] if m["id"] not in incoming_ids]
        after = [m for m in thread[position:] if m["id"] != temp_id and m["id"] not in incoming_ids]
        self._threads[key] = before + incoming + after
        self._notify(key)

    def remove_message_by_id(self, persona_id: str, user_id: str, message_id) -> None:
        key = (persona_id, user_id)
        thread = self._threads.get(key)
        if thread is None:
            return
        self._threads[key] = [m for m in thread if m["id"] != message_id]
        self._notify(key)

    def subscribe_thread(self, persona_id: str, user_id: str, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` for every change to the thread. Returns an unsubscribe function."""
        key = (persona_id, user_id)
        self._listeners.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if not listeners:
                return
            if callback in listeners:
                listeners.remove(callback)
            if not listeners:
                del self._listeners[key]

        return unsubscribe

    def listener_count(self, persona_id: str, user_id: str) -> int:
        return len(self._listeners.get((persona_id, user_id), []))

    def dispose(self) -> None:
        """Drop all threads and listeners and cancel in-flight fetches. Call on sign-out."""
        self._disposed = True
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
        self._threads.clear()
        self._listeners.clear()
        self._initialized.clear()

    def _check_alive(self) -> None:
        if self._disposed:
            raise RuntimeError("ChatCache has been disposed")

    def _notify(self, key: ThreadKey) -> None:
        snapshot = list(self._threads.get(key, []))
        for callback in list(self._listeners.get(key, [])):
            try:
                callback(list(snapshot))
            except Exception:
                log.exception("cache.listener.failed persona=%s", key[0])
