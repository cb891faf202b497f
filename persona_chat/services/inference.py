"""
Client for the external LLM/TTS inference service.

The service answers either with a plain JSON object
``{"response": ..., "audio_output_url"?: ..., "audio_base64"?: ...}`` or with
a gateway envelope ``{"statusCode": 200, "body": <json string or object>}``.
Both are normalized into one ``InferenceReply``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from persona_chat.core.config import settings

log = logging.getLogger(__name__)


class InferenceError(Exception):
    """Inference call failed or returned an unusable payload."""


@dataclass
class InferenceRequest:
    user_id: str
    influencer_name: str
    personality_prompt: str
    chat_history: list[tuple[str, str]]
    msgs_cnt_by_user: int
    msgs_cnt_total: int
    user_query: str
    input_media_type: str = "text"
    should_generate_tts: bool = False
    creator_id: str = ""

    def to_payload(self) -> dict:
        return {
            "user_id": self.user_id,
            "creator_id": self.creator_id,
            "influencer_name": self.influencer_name,
            "influencer_personality_prompt": self.personality_prompt,
            "chat_history": [[role, text] for role, text in self.chat_history],
            "msgs_cnt_by_user": self.msgs_cnt_by_user,
            "msgs_cnt_total": self.msgs_cnt_total,
            "input_media_type": self.input_media_type,
            "user_query": self.user_query,
            "should_generate_tts": self.should_generate_tts,
        }


@dataclass
class InferenceReply:
    text: str
    audio_url: Optional[str] = None
    audio_base64: Optional[str] = None
    is_fallback: bool = False
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def audio(self) -> Optional[str]:
        return self.audio_url or self.audio_base64

    @classmethod
    def from_payload(cls, payload: Any) -> "InferenceReply":
        if not isinstance(payload, dict):
            raise InferenceError(f"unexpected payload type {type(payload).__name__}")

        if "statusCode" in payload and "body" in payload:
            status_code = payload.get("statusCode")
            body = payload.get("body")
            if isinstance(body, (str, bytes)):
                try:
                    body = json.loads(body)
                except ValueError:
                    body = {"response": body if isinstance(body, str) else body.decode("utf-8", "replace")}
            if status_code != 200:
                raise InferenceError(f"upstream status {status_code}")
            if not isinstance(body, dict):
                raise InferenceError("envelope body is not an object")
            payload = body

        text = payload.get("response") or payload.get("message") or payload.get("content")
        if not isinstance(text, str) or not text.strip():
            raise InferenceError("empty response text")

        return cls(
            text=text.strip(),
            audio_url=payload.get("audio_output_url") or None,
            audio_base64=payload.get("audio_base64") or None,
            raw=payload,
        )


def fallback_reply(user_text: str, influencer_name: str = "") -> InferenceReply:
    """Deterministic local reply used when the inference call fails."""
    said = (user_text or "").strip() or "that"
    if len(said) > 200:
        said = said[:197] + "..."
    name = f" It's {influencer_name}." if influencer_name else ""
    return InferenceReply(
        text=f"Sorry, I'm having trouble answering right now.{name} You said: \"{said}\". Tell me more?",
        is_fallback=True,
    )


class InferenceClient:
    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        creator_id: str = "",
        connect_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_token = api_token
        self.creator_id = creator_id
        self.connect_timeout = connect_timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _post(self, request: InferenceRequest, timeout: httpx.Timeout) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.post(self.base_url, json=request.to_payload(), headers=self._headers())

    async def generate(self, request: InferenceRequest, timeout: float) -> InferenceReply:
        if not self.base_url:
            raise InferenceError("inference url not configured")
        if not request.creator_id:
            request.creator_id = self.creator_id

        t = httpx.Timeout(timeout, connect=min(self.connect_timeout, timeout))
        try:
            # httpx limits each phase; wait_for bounds the whole call.
            r = await asyncio.wait_for(self._post(request, t), timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise InferenceError(f"timeout after {timeout}s") from e
        except httpx.HTTPError as e:
            raise InferenceError(f"transport error: {e}") from e

        if r.status_code >= 400:
            raise InferenceError(f"http {r.status_code}")
        try:
            data = r.json()
        except ValueError as e:
            raise InferenceError("invalid json") from e
        return InferenceReply.from_payload(data)

    async def reply_or_fallback(self, request: InferenceRequest, timeout: float) -> InferenceReply:
        try:
            reply = await self.generate(request, timeout)
            log.info(
                "inference.ok user=%s history=%d audio=%s",
                request.user_id, len(request.chat_history), bool(reply.audio),
            )
            return reply
        except InferenceError as e:
            log.warning("inference.fallback user=%s reason=%s", request.user_id, e)
            return fallback_reply(request.user_query, request.influencer_name)


def get_inference_client() -> InferenceClient:
    return InferenceClient(
        base_url=settings.INFERENCE_URL,
        api_token=settings.INFERENCE_API_TOKEN,
        creator_id=settings.INFERENCE_CREATOR_ID,
        connect_timeout=settings.INFERENCE_CONNECT_TIMEOUT_SECONDS,
    )
