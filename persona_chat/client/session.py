import logging
from typing import Callable, Optional

import httpx

from .errors import NotSignedIn, error_from_response

log = logging.getLogger(__name__)


class SessionClient:
    """Holds the access token and builds HTTP clients against the API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.user: dict = {}
        self._on_sign_out: list[Callable[[], None]] = []

    @property
    def is_signed_in(self) -> bool:
        return bool(self.access_token)

    @property
    def user_id(self) -> Optional[str]:
        return self.user.get("id")

    def set_session(self, access_token: str, refresh_token: str | None = None, user: dict | None = None) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.user = user or {}

    def auth_headers(self) -> dict:
        if not self.access_token:
            raise NotSignedIn("sign in first")
        return {"Authorization": f"Bearer {self.access_token}"}

    def http(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    def on_sign_out(self, callback: Callable[[], None]) -> None:
        """Register a callback run after sign-out (e.g. ``cache.dispose``)."""
        self._on_sign_out.append(callback)

    async def sign_up(self, email: str, password: str, username: str | None = None, display_name: str | None = None) -> dict:
        async with self.http() as client:
            r = await client.post("/api/auth/signup", json={
                "email": email,
                "password": password,
                "username": username,
                "display_name": display_name,
            })
        if r.status_code >= 400:
            raise error_from_response(r)
        data = r.json()
        if data.get("access_token"):
            self.set_session(data["access_token"], user={"id": data.get("user_id"), "email": email})
        return data

    async def sign_in(self, email: str, password: str) -> dict:
        async with self.http() as client:
            r = await client.post("/api/auth/signin", json={"email": email, "password": password})
        if r.status_code >= 400:
            raise error_from_response(r)
        data = r.json()
        self.set_session(data["access_token"], data.get("refresh_token"), data.get("user"))
        return data

    async def sign_out(self) -> None:
        if self.access_token:
            try:
                async with self.http() as client:
                    await client.post("/api/auth/signout", headers=self.auth_headers())
            except httpx.HTTPError as e:
                log.warning("session.sign_out.remote_failed err=%s", e)
        self.access_token = None
        self.refresh_token = None
        self.user = {}
        for callback in self._on_sign_out:
            callback()
