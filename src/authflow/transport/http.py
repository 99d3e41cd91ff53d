"""httpx-backed transports for token endpoint requests."""

from __future__ import annotations

import logging

import httpx

from authflow.models.errors import TransportError
from authflow.transport.base import (
    AsyncTransport,
    SyncTransport,
    TokenHttpRequest,
    TokenHttpResponse,
)

logger = logging.getLogger(__name__)


def _to_token_response(response: httpx.Response) -> TokenHttpResponse:
    return TokenHttpResponse(
        status_code=response.status_code,
        content=response.content,
        headers=dict(response.headers),
    )


class HttpxTransport(SyncTransport):
    """Blocking transport over :class:`httpx.Client`.

    Args:
        client: Client to send with. One is created (and owned) when omitted.
        timeout: HTTP request timeout in seconds for an owned client
    """

    def __init__(self, client: httpx.Client | None = None, timeout: float = 30.0):
        self.timeout = timeout
        self._owns_client = client is None
        self._http_client = client or httpx.Client(timeout=timeout)

    def send(self, request: TokenHttpRequest) -> TokenHttpResponse:
        logger.debug(f"POST {request.url}")
        try:
            response = self._http_client.post(
                request.url, data=request.form, headers=request.headers
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error calling {request.url}: {e}") from e

        return _to_token_response(response)

    def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            self._http_client.close()


class AsyncHttpxTransport(AsyncTransport):
    """Cooperative transport over :class:`httpx.AsyncClient`.

    Args:
        client: Client to send with. One is created (and owned) when omitted.
        timeout: HTTP request timeout in seconds for an owned client
    """

    def __init__(
        self, client: httpx.AsyncClient | None = None, timeout: float = 30.0
    ):
        self.timeout = timeout
        self._owns_client = client is None
        self._http_client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, request: TokenHttpRequest) -> TokenHttpResponse:
        logger.debug(f"POST {request.url}")
        try:
            response = await self._http_client.post(
                request.url, data=request.form, headers=request.headers
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error calling {request.url}: {e}") from e

        return _to_token_response(response)

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            await self._http_client.aclose()
