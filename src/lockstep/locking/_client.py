"""Client for the Lockstep lock service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field

from lockstep.exceptions import APIError, LockConflictError, LockServiceUnavailableError

logger = logging.getLogger(__name__)


class Lease(BaseModel):
    """A lease as reported by the lock service."""

    model_config = ConfigDict(populate_by_name=True)

    resource: str
    client: str
    expire_in: int = Field(alias="expireIn")


class LockConflict(BaseModel):
    """Returned instead of `True` when a resource is held by another client."""

    model_config = ConfigDict(populate_by_name=True)

    first_resource: str = Field(alias="firstResource")
    client: str
    expire_in: int = Field(alias="expireIn")

    def __str__(self) -> str:
        return (
            f"{self.first_resource} held by {self.client}, "
            f"expires in {self.expire_in} ms"
        )


def _check_response(response: httpx.Response, operation: str) -> None:
    """Raise APIError unless the response is a 200."""
    if response.status_code == 200:
        return
    detail = response.text[:200] if response.text else None
    raise APIError(f"{operation} failed", status_code=response.status_code, detail=detail)


class LockClient:
    """Talks to one namespace of a lock service.

    All requests are made on behalf of `client_id`, which identifies this
    process for the lifetime of a run.

    Usage:
        async with LockClient("http://localhost:1524/myproject", client_id) as client:
            res = await client.acquire(["account-42"], expire_in=40000)
            if res is True:
                ...
                await client.release(["account-42"])
    """

    def __init__(
        self,
        url: str,
        client_id: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: URL of the namespace, e.g. `http://localhost:1524/myproject`.
            client_id: Identity used as lease holder.
            timeout: HTTP timeout in seconds.
            http_client: Pre-configured httpx client (e.g. with an ASGI
                transport in tests). Not closed by `aclose()`.
        """
        self.url = url.rstrip("/")
        self.client_id = client_id
        self.timeout = timeout
        self._async_client = http_client
        self._owns_client = http_client is None

    @property
    def _client(self) -> httpx.AsyncClient:
        """Lazy-initialized async HTTP client."""
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(timeout=self.timeout)
        return self._async_client

    async def _request(
        self, method: str, operation: str, json: dict[str, Any] | None = None
    ) -> httpx.Response:
        try:
            return await self._client.request(method, self.url, json=json)
        except httpx.HTTPError as e:
            raise LockServiceUnavailableError(
                f"{operation} at {self.url} failed", detail=str(e) or repr(e)
            ) from e

    async def acquire(
        self, resources: list[str], expire_in: int
    ) -> Literal[True] | LockConflict:
        """Lease all `resources` for `expire_in` milliseconds (all or nothing).

        Acquiring resources this client already holds refreshes their lease.

        Returns:
            True on success, the first conflict otherwise.

        Raises:
            APIError: On any other response or if the service is unreachable.
        """
        operation = f"Acquiry of {','.join(resources)}"
        response = await self._request(
            "POST",
            operation,
            json={
                "client": self.client_id,
                "resources": list(resources),
                "expireIn": expire_in,
            },
        )
        if response.status_code == 409:
            return LockConflict.model_validate(response.json())
        _check_response(response, operation)
        return True

    async def release(
        self, resources: list[str], client: str | None = None
    ) -> Literal[True] | LockConflict:
        """Release `resources`.

        Args:
            resources: Resources to release.
            client: Release on behalf of another holder (operator cleanup).

        Returns:
            True on success, the first conflict otherwise.
        """
        operation = f"Release of {','.join(resources)}"
        response = await self._request(
            "DELETE",
            operation,
            json={
                "client": client or self.client_id,
                "resources": list(resources),
            },
        )
        if response.status_code == 409:
            return LockConflict.model_validate(response.json())
        _check_response(response, operation)
        return True

    async def list(self) -> list[Lease]:
        """List all non-expired leases of the namespace."""
        operation = "Resource listing"
        response = await self._request("GET", operation)
        _check_response(response, operation)
        return [Lease.model_validate(item) for item in response.json()]

    async def clear_all(self) -> int:
        """Release every lease of the namespace on behalf of its holder.

        Returns:
            Number of released leases.
        """
        leases = await self.list()

        async def _release(lease: Lease) -> None:
            res = await self.release([lease.resource], client=lease.client)
            if res is not True:
                raise LockConflictError(res)

        await asyncio.gather(*(_release(lease) for lease in leases))
        logger.info(f"Cleared {len(leases)} leases at {self.url}")
        return len(leases)

    async def aclose(self) -> None:
        """Close the HTTP client (if created by this instance)."""
        if self._async_client is not None and self._owns_client:
            await self._async_client.aclose()
            self._async_client = None

    async def __aenter__(self) -> "LockClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False
