import logging
from typing import Any, Optional

import httpx

from .errors import ApiError, error_from_response
from .session import SessionClient

log = logging.getLogger(__name__)


class ChatApi:
    """Typed wrappers over the HTTP endpoints. Non-2xx responses raise ``ApiError``."""

    def __init__(self, session: SessionClient):
        self.session = session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        auth: bool = True,
        json: Any = None,
        params: dict | None = None,
        timeout: float | None = None,
    ) -> Any:
        headers = self.session.auth_headers() if auth else {}
        try:
            async with self.session.http(timeout) as client:
                r = await client.request(method, path, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            log.warning("api.transport_error method=%s path=%s err=%s", method, path, e)
            raise ApiError(0, f"Network error: {e}") from e
        if r.status_code >= 400:
            raise error_from_response(r)
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            # Proxies and captive portals answer 200 with HTML.
            log.warning("api.invalid_body method=%s path=%s status=%s", method, path, r.status_code)
            raise ApiError(r.status_code, "Unexpected response from server") from e

    @staticmethod
    def _send_body(influencer_id: str, content: str | None, type: str | None, media: str | None, wants_audio: bool) -> dict:
        body: dict = {"influencerId": influencer_id, "content": content}
        if type:
            body["type"] = type
        if media:
            body["media"] = media
        if wants_audio:
            body["wantsAudio"] = True
        return body

    async def send_message(
        self,
        influencer_id: str,
        content: str | None,
        type: str | None = None,
        media: str | None = None,
        wants_audio: bool = False,
    ) -> dict:
        return await self._request(
            "POST", "/api/post-message",
            json=self._send_body(influencer_id, content, type, media, wants_audio),
        )

    async def send_message_fast(
        self,
        influencer_id: str,
        content: str | None,
        type: str | None = None,
        media: str | None = None,
        wants_audio: bool = False,
    ) -> dict:
        return await self._request(
            "POST", "/api/post-message-fast",
            json=self._send_body(influencer_id, content, type, media, wants_audio),
        )

    async def save_messages_background(self, influencer_id: str, user_message: dict, ai_message: dict) -> dict:
        return await self._request("POST", "/api/save-messages-background", json={
            "influencerId": influencer_id,
            "userMessage": user_message,
            "aiMessage": ai_message,
        })

    async def get_messages(self, influencer_id: str, limit: int = 20, offset: int = 0) -> list[dict]:
        """One page, newest first."""
        data = await self._request(
            "GET", f"/api/conversations/{influencer_id}/messages",
            params={"limit": limit, "offset": offset},
        )
        messages = data.get("messages") if isinstance(data, dict) else None
        if not isinstance(messages, list):
            raise ApiError(200, "Malformed message page")
        return messages

    async def initialize_conversation(self, influencer_id: str) -> dict:
        return await self._request("POST", "/api/conversation/initialize", json={"influencerId": influencer_id})

    async def list_conversations(self) -> list[dict]:
        return await self._request("GET", "/api/conversations")

    async def mark_read(self, influencer_id: str) -> int:
        data = await self._request("POST", f"/api/conversations/{influencer_id}/mark-read")
        return data["marked"]

    async def delete_history(self) -> int:
        data = await self._request("DELETE", "/api/chat/history")
        return data["deleted"]

    async def current_influencer(self) -> dict:
        return await self._request("GET", "/api/influencer/current", auth=False)

    async def list_plans(self, influencer_id: Optional[str] = None) -> list[dict]:
        params = {"influencerId": influencer_id} if influencer_id else None
        return await self._request("GET", "/api/plans", auth=False, params=params)

    async def token_balance(self, influencer_id: str) -> dict:
        return await self._request("GET", "/api/tokens/balance", params={"influencerId": influencer_id})

    async def list_subscriptions(self) -> list[dict]:
        return await self._request("GET", "/api/subscriptions")

    async def cancel_subscription(self, subscription_id: str | None = None) -> list[dict]:
        body = {"subscriptionId": subscription_id} if subscription_id else {}
        return await self._request("POST", "/api/subscriptions/cancel", json=body)

    async def create_checkout_session(self, plan_id: str, influencer_id: str) -> dict:
        return await self._request(
            "POST", "/api/stripe/create-checkout-session", json={"planId": plan_id, "influencerId": influencer_id}
        )

    async def create_portal_session(self) -> dict:
        return await self._request("POST", "/api/stripe/create-portal-session")

    async def me(self) -> dict:
        return await self._request("GET", "/api/users/me")

    async def update_me(self, **changes) -> dict:
        return await self._request("PATCH", "/api/users/me", json=changes)
