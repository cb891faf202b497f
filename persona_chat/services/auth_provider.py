"""Thin async client for the hosted auth provider's (Supabase GoTrue) REST API."""

import logging

import httpx

from persona_chat.core.config import settings

log = logging.getLogger(__name__)


class AuthProviderError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return r.text or f"http {r.status_code}"
    return (
        data.get("error_description")
        or data.get("msg")
        or data.get("message")
        or data.get("error")
        or f"http {r.status_code}"
    )


class AuthProvider:
    def __init__(
        self,
        base_url: str,
        anon_key: str,
        service_role_key: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.service_role_key = service_role_key
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, *, key: str, bearer: str | None = None, json: dict | None = None) -> dict:
        headers = {"apikey": key, "Authorization": f"Bearer {bearer or key}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await client.request(method, f"{self.base_url}/auth/v1{path}", headers=headers, json=json)
        if r.status_code >= 400:
            message = _error_message(r)
            log.warning("auth_provider.error method=%s path=%s status=%s msg=%s", method, path, r.status_code, message)
            raise AuthProviderError(r.status_code, message)
        if not r.content:
            return {}
        return r.json()

    async def sign_up(self, email: str, password: str, metadata: dict | None = None) -> dict:
        return await self._request(
            "POST", "/signup", key=self.anon_key,
            json={"email": email, "password": password, "data": metadata or {}},
        )

    async def sign_in_with_password(self, email: str, password: str) -> dict:
        return await self._request(
            "POST", "/token?grant_type=password", key=self.anon_key,
            json={"email": email, "password": password},
        )

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", key=self.anon_key, bearer=access_token)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/admin/users/{user_id}", key=self.service_role_key)


def get_auth_provider() -> AuthProvider:
    return AuthProvider(
        base_url=settings.SUPABASE_URL,
        anon_key=settings.SUPABASE_ANON_KEY,
        service_role_key=settings.SUPABASE_SERVICE_ROLE_KEY,
        timeout=settings.AUTH_TIMEOUT_SECONDS,
    )
