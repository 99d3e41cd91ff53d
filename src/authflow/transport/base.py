"""Transport capability used by the token exchanger.

The exchanger builds a :class:`TokenHttpRequest` and hands it to a
transport. Blocking callers supply a :class:`SyncTransport`, event loop
callers an :class:`AsyncTransport`. Both return a :class:`TokenHttpResponse`
without interpreting the body.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Self


@dataclass(frozen=True)
class TokenHttpRequest:
    """A form-encoded POST to a token endpoint."""

    url: str
    form: dict[str, str] = field(repr=False)
    headers: dict[str, str] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class TokenHttpResponse:
    """Raw token endpoint response: status, headers and body bytes."""

    status_code: int
    content: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON
        """
        return json.loads(self.content)


class SyncTransport(ABC):
    """Blocking transport: ``send`` occupies the calling thread."""

    @abstractmethod
    def send(self, request: TokenHttpRequest) -> TokenHttpResponse:
        """Send a token request.

        Raises:
            TransportError: If the endpoint cannot be reached
        """

    def close(self) -> None:
        """Release any connections held by the transport."""

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class AsyncTransport(ABC):
    """Cooperative transport: ``send`` suspends on the event loop."""

    @abstractmethod
    async def send(self, request: TokenHttpRequest) -> TokenHttpResponse:
        """Send a token request.

        Raises:
            TransportError: If the endpoint cannot be reached
        """

    async def close(self) -> None:
        """Release any connections held by the transport."""

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
