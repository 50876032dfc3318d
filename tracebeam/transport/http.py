from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class FetchResponse(Protocol):
    status_code: int
    text: str

    def json(self) -> Any: ...


class Fetch(Protocol):
    """
    Async transport used to deliver one ingestion request.

    Implementations raise on network failures and timeouts and return the
    response for every HTTP status.
    """

    async def __call__(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        content: bytes,
        timeout: float,
    ) -> FetchResponse: ...


class HttpxFetch:
    """Default transport over ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        # The client is created on first use so it binds to the worker loop.
        self.client = client
        self.transport = transport
        self._owns_client = client is None

    async def __call__(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        content: bytes,
        timeout: float,
    ) -> httpx.Response:
        if self.client is None:
            self.client = httpx.AsyncClient(transport=self.transport)

        return await self.client.request(
            method, url, headers=headers, content=content, timeout=timeout
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None
            logger.debug("HTTP client closed")


def basic_auth_header(public_key: str, secret_key: str) -> Dict[str, str]:
    credentials = base64.b64encode(f"{public_key}:{secret_key}".encode()).decode("ascii")
    return {"Authorization": f"Basic {credentials}"}
