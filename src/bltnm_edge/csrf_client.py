"""Client-side CSRF token cache and a JSON API client that uses it.

The token is fetched once from the health endpoint (the server attaches it
to every safe response as ``x-csrf-token``) and reused for every
state-changing request until it is cleared, e.g. on logout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from bltnm_edge.config import Settings

logger = logging.getLogger(__name__)

CSRF_HEADER = "x-csrf-token"
SAFE_METHODS = {"GET", "HEAD"}


class CsrfTokenUnavailable(Exception):
    """Raised in strict mode when no token could be obtained."""


class ApiClientError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class CsrfTokenClient:
    """Single-slot token cache.

    By default a failed fetch yields ``""`` and the server rejects the
    eventual mutating request with TOKEN_MISSING. With ``strict=True`` the
    failure surfaces as :class:`CsrfTokenUnavailable` instead.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        health_path: str = "/health",
        strict: bool = False,
    ) -> None:
        self.base_url = (base_url or Settings.API_URL).rstrip("/")
        self.health_path = health_path
        self.strict = strict
        self._http = http or httpx.AsyncClient()
        self._owns_http = http is None
        self._token: str | None = None
        self._lock = asyncio.Lock()

    @property
    def token(self) -> str | None:
        return self._token

    async def get_token(self) -> str:
        if self._token:
            return self._token
        async with self._lock:
            # Another caller may have fetched it while we waited
            if self._token:
                return self._token
            return await self._fetch()

    async def _fetch(self) -> str:
        url = f"{self.base_url}{self.health_path}"
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch CSRF token: %s", exc)
            if self.strict:
                raise CsrfTokenUnavailable(str(exc)) from exc
            return ""

        token = response.headers.get(CSRF_HEADER)
        if not token:
            logger.warning("No CSRF token header on %s (status %d)", url, response.status_code)
            if self.strict:
                raise CsrfTokenUnavailable(f"{url} returned no {CSRF_HEADER} header")
            return ""
        self._token = token
        return token

    def set_token(self, token: str) -> None:
        self._token = token

    def clear_token(self) -> None:
        self._token = None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class ApiClient:
    """JSON client that attaches the CSRF token to mutating requests."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        strict: bool = False,
    ) -> None:
        self.base_url = (base_url or Settings.API_URL).rstrip("/")
        self._http = http or httpx.AsyncClient()
        self._owns_http = http is None
        self.tokens = CsrfTokenClient(self.base_url, http=self._http, strict=strict)

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        method = method.upper()
        headers = dict(kwargs.pop("headers", None) or {})
        if method not in SAFE_METHODS:
            token = await self.tokens.get_token()
            if token:
                headers[CSRF_HEADER] = token

        response = await self._http.request(
            method, f"{self.base_url}{path}", headers=headers, **kwargs
        )

        refreshed = response.headers.get(CSRF_HEADER)
        if refreshed:
            self.tokens.set_token(refreshed)

        if response.is_error:
            raise ApiClientError(response.status_code, _error_message(response))
        if not response.content:
            return None
        return response.json()

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def logout(self) -> Any:
        try:
            return await self.post("/api/auth/signout")
        finally:
            self.tokens.clear_token()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str):
                return body[key]
    return f"HTTP error! status: {response.status_code}"
