"""Async HTTP client shared by REST handlers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import SecretStr

from saas_provisioner import __version__
from saas_provisioner.errors import ConflictError, NotFoundError, ProviderError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"saas-provisioner/{__version__}"
_EXCERPT = 200


def reveal_payload(obj: Any) -> Any:
    """Replace secrets with their plaintext for a request body."""
    if isinstance(obj, SecretStr):
        return obj.get_secret_value()
    if isinstance(obj, Mapping):
        return {k: reveal_payload(v) for k, v in obj.items()}
    if isinstance(obj, list | tuple):
        return [reveal_payload(v) for v in obj]
    return obj


class ApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` that maps status codes to errors.

    404 raises :class:`NotFoundError`, 409 raises :class:`ConflictError`, any
    other non-2xx status or transport failure raises :class:`ProviderError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: SecretStr | None = None,
        timeout: float = 30.0,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        default_headers = {
            "Content-Type": "application/json",
            "User-Agent": DEFAULT_USER_AGENT,
        }
        if token is not None:
            default_headers["Authorization"] = f"Bearer {token.get_secret_value()}"
        default_headers.update(headers or {})
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=default_headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (``None`` when empty)."""
        body = reveal_payload(json) if json is not None else None
        try:
            response = await self._client.request(method, path, json=body, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {self._base_url}{path} failed: {e}") from e

        logger.debug("%s %s -> %d", method, response.request.url, response.status_code)
        status = response.status_code
        if response.is_success:
            return response.json() if response.content else None

        message = f"{method} {path} returned {status}: {response.text[:_EXCERPT]}"
        if status == 404:
            raise NotFoundError(message, status_code=status)
        if status == 409:
            raise ConflictError(message, status_code=status)
        raise ProviderError(message, status_code=status)

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, *, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def patch(self, path: str, *, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
