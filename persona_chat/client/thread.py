"""Send flow for one thread: optimistic append, send, reconcile or roll back."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .api import ChatApi
from .cache import ChatCache
from .errors import ApiError, NotSignedIn

log = logging.getLogger(__name__)


@dataclass
class PendingSave:
    """A fast-path turn shown to the user but not yet persisted."""

    influencer_id: str
    user_message: dict
    ai_message: dict
    error: Optional[str] = None
    attempts: int = 0


class ThreadController:
    def __init__(self, api: ChatApi, cache: ChatCache, persona_id: str, user_id: str, fast: bool = False):
        self.api = api
        self.cache = cache
        self.persona_id = persona_id
        self.user_id = user_id
        self.fast = fast
        self._pending: dict[str, PendingSave] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_saves(self) -> list[PendingSave]:
        """Fast-path turns whose background save has not succeeded yet."""
        return list(self._pending.values())

    async def load(self, limit: int = 20) -> list[dict]:
        return await self.cache.get_thread(self.persona_id, self.user_id, limit)

    async def send(
        self,
        content: str | None,
        type: str | None = None,
        media: str | None = None,
        wants_audio: bool = False,
    ) -> tuple[dict, dict]:
        """
        Returns (user message, reply). On failure the optimistic message is
        removed and the ``ApiError`` re-raised; a ``PaymentRequiredError``
        signals the balance is exhausted.
        """
        optimistic = {
            "id": f"optimistic_{uuid.uuid4().hex}",
            "user_id": self.user_id,
            "influencer_id": self.persona_id,
            "sender": "user",
            "type": type or "text",
            "content": content or "",
            "created_at": datetime.now(timezone.utc).isoformat(),
            "is_temp": True,
        }
        self.cache.append_to_thread(self.persona_id, self.user_id, optimistic)

        send = self.api.send_message_fast if self.fast else self.api.send_message
        try:
            data = await send(self.persona_id, content, type=type, media=media, wants_audio=wants_audio)
        except (ApiError, NotSignedIn):
            self.cache.remove_message_by_id(self.persona_id, self.user_id, optimistic["id"])
            raise

        user_message, ai_message = data["userMessage"], data["aiMessage"]
        self.cache.replace_optimistic(self.persona_id, self.user_id, optimistic["id"], [user_message, ai_message])

        if data.get("isFastMode"):
            pending = PendingSave(self.persona_id, user_message, ai_message)
            self._pending[str(user_message["id"])] = pending
            task = asyncio.ensure_future(self._save(pending))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return user_message, ai_message

    async def _save(self, pending: PendingSave) -> bool:
        pending.attempts += 1
        try:
            result = await self.api.save_messages_background(
                pending.influencer_id, pending.user_message, pending.ai_message,
            )
        except (ApiError, NotSignedIn) as e:
            result = {"success": False, "error": str(e)}

        if not result.get("success"):
            # The reply stays visible; the turn is kept for retry_pending_saves().
            pending.error = result.get("error") or "save failed"
            log.warning("thread.save.failed persona=%s attempts=%d err=%s", self.persona_id, pending.attempts, pending.error)
            return False

        for provisional, saved in (
            (pending.user_message, result.get("userMessage")),
            (pending.ai_message, result.get("aiMessage")),
        ):
            if saved:
                self.cache.replace_optimistic(self.persona_id, self.user_id, provisional["id"], [saved])
        self._pending.pop(str(pending.user_message["id"]), None)
        return True

    async def wait_for_saves(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def retry_pending_saves(self) -> int:
        """Retry failed background saves. Returns how many succeeded."""
        await self.wait_for_saves()
        saved = 0
        for pending in list(self._pending.values()):
            if await self._save(pending):
                saved += 1
        return saved
