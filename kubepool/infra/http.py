from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiohttp
from loguru import logger

# ─── Errors ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class HttpError(Exception):
    """Non-2xx response, or status 0 when the server was never reached."""

    status: int
    body: str

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.body}"


# ─── Auth ────────────────────────────────────────────────────────────


@runtime_checkable
class Auth(Protocol):
    async def headers(self) -> dict[str, str]: ...
    async def on_401(self) -> None: ...


class BearerAuth:
    """Static token, mostly for tests and pre-issued service tokens."""

    def __init__(self, token: str) -> None:
        self._header = {"Authorization": f"Bearer {token}"}

    async def headers(self) -> dict[str, str]:
        return self._header

    async def on_401(self) -> None:
        pass


class OAuth2PasswordAuth:
    """Resource-owner password grant against Contabo's identity provider.

    One access token is shared by all concurrent requests. A 401 on any of
    them drops it, and the next request asks for a new one.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        username: str,
        password: str,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._token_url = token_url
        self._grant = {
            "grant_type": "password",
            "client_id": client_id,
            "client_secret": client_secret,
            "username": username,
            "password": password,
        }
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._token: str | None = None
        self._lock = asyncio.Lock()
        self._log = logger.bind(component="auth")

    async def _request_token(self) -> str:
        self._log.debug("Requesting access token for {user}", user=self._grant["username"])
        async with (
            aiohttp.ClientSession(timeout=self._timeout) as session,
            session.post(self._token_url, data=self._grant) as resp,
        ):
            if resp.status >= 400:
                body = await resp.text()
                self._log.error("Token grant rejected ({status}): {body}", status=resp.status, body=body[:200])
                raise HttpError(status=resp.status, body=body)
            payload = await resp.json()
        return payload["access_token"]

    async def headers(self) -> dict[str, str]:
        async with self._lock:
            if self._token is None:
                self._token = await self._request_token()
            return {"Authorization": f"Bearer {self._token}"}

    async def on_401(self) -> None:
        async with self._lock:
            self._token = None


# ─── Client ──────────────────────────────────────────────────────────


class HttpClient:
    """JSON client over one lazily opened aiohttp session.

    Each request carries its own ``x-request-id``; Contabo rejects calls
    without one. A 401 resets the auth and the call is replayed once.
    """

    def __init__(
        self,
        base_url: str,
        auth: Auth | None = None,
        *,
        timeout: float = 30,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._default_headers = {"Accept": "application/json", **(default_headers or {})}
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(component="http")

    def _session_or_new(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _send(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | list[Any] | None,
        params: dict[str, Any] | None,
    ) -> tuple[int, Any]:
        """One round trip: ``(status, decoded JSON or None)``, error text on >= 400."""
        try:
            headers = {**self._default_headers, "x-request-id": str(uuid.uuid4())}
            if self._auth is not None:
                headers.update(await self._auth.headers())
            async with self._session_or_new().request(
                method, f"{self._base_url}{path}", headers=headers, json=json, params=params,
            ) as resp:
                if resp.status >= 400:
                    return resp.status, await resp.text()
                raw = await resp.read()
                return resp.status, (await resp.json(content_type=None) if raw else None)
        except aiohttp.ClientError as e:
            raise HttpError(status=0, body=str(e)) from e
        except TimeoutError as e:
            raise HttpError(status=0, body=f"timed out after {self._timeout.total}s") from e

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        self._log.debug("{method} {path}", method=method, path=path)
        status, payload = await self._send(method, path, json, params)

        if status == 401 and self._auth is not None:
            self._log.debug("401 on {path}, renewing credentials", path=path)
            await self._auth.on_401()
            status, payload = await self._send(method, path, json, params)

        if status >= 400:
            self._log.warning(
                "{method} {path} failed with HTTP {status}: {body}",
                method=method, path=path, status=status, body=payload[:500],
            )
            raise HttpError(status=status, body=payload)
        return payload

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> HttpClient:
        self._session_or_new()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
