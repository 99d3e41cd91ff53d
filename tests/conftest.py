import json
from typing import Any

import pytest

from authflow.transport.base import (
    AsyncTransport,
    SyncTransport,
    TokenHttpRequest,
    TokenHttpResponse,
)


def json_response(status_code: int, body: Any) -> TokenHttpResponse:
    return TokenHttpResponse(
        status_code=status_code,
        content=json.dumps(body).encode("utf-8"),
        headers={"content-type": "application/json"},
    )


class RecordingTransport(SyncTransport):
    """Returns queued responses and records every request sent."""

    def __init__(self) -> None:
        self.requests: list[TokenHttpRequest] = []
        self.responses: list[TokenHttpResponse] = []
        self.closed = False

    def queue(self, status_code: int, body: Any) -> None:
        self.responses.append(json_response(status_code, body))

    def send(self, request: TokenHttpRequest) -> TokenHttpResponse:
        self.requests.append(request)
        return self.responses.pop(0)

    def close(self) -> None:
        self.closed = True


class AsyncRecordingTransport(AsyncTransport):
    def __init__(self) -> None:
        self.requests: list[TokenHttpRequest] = []
        self.responses: list[TokenHttpResponse] = []
        self.closed = False

    def queue(self, status_code: int, body: Any) -> None:
        self.responses.append(json_response(status_code, body))

    async def send(self, request: TokenHttpRequest) -> TokenHttpResponse:
        self.requests.append(request)
        return self.responses.pop(0)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def async_transport() -> AsyncRecordingTransport:
    return AsyncRecordingTransport()
