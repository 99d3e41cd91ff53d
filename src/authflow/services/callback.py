"""Local listeners that capture the authorization redirect.

A listener binds a loopback port, accepts the first request to its
callback path, answers the browser with a small HTML page and closes.
:class:`CallbackListener` blocks the calling thread;
:class:`AsyncCallbackListener` suspends on the running event loop. Both
release the socket on every exit path.
"""

from __future__ import annotations

import asyncio
import html
import logging
import socket
import threading
import time
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer
from types import TracebackType
from typing import Any, Self
from urllib.parse import urlsplit

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from authflow.models.errors import (
    AuthorizationCancelledError,
    CallbackBindError,
    CallbackTimeoutError,
    OAuth2Error,
    RedirectUriParseError,
)
from authflow.models.flow import AuthorizationResponse

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_HTML = (
    "<html><body><h2>Authorization successful. "
    "You can close this window and return to the application.</h2></body></html>"
)
DEFAULT_ERROR_HTML = "<html><body><h2>Authorization failed: {error}</h2></body></html>"
NOT_FOUND_HTML = "<html><body><h2>Not found</h2></body></html>"

# How often the blocking listener checks for cancellation
POLL_INTERVAL = 0.25


class ListenerState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RECEIVED = "received"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    CLOSED = "closed"


def _parse_callback(query: str) -> AuthorizationResponse | OAuth2Error:
    try:
        return AuthorizationResponse.from_query(query)
    except RedirectUriParseError as e:
        return e


def _render_page(
    outcome: AuthorizationResponse | OAuth2Error, success_html: str, error_html: str
) -> tuple[int, str]:
    if isinstance(outcome, OAuth2Error):
        return 400, error_html.format(error=html.escape(str(outcome)))
    if outcome.is_error():
        message = outcome.error
        if outcome.error_description:
            message += f" - {outcome.error_description}"
        return 200, error_html.format(error=html.escape(message))
    return 200, success_html


def _resolve(outcome: AuthorizationResponse | OAuth2Error) -> AuthorizationResponse:
    if isinstance(outcome, OAuth2Error):
        raise outcome
    if outcome.is_error():
        logger.warning(f"Authorization callback contained error: {outcome.error}")
        raise outcome.to_provider_error()
    logger.info("Authorization callback received with authorization code")
    return outcome


def _bind_error(host: str, port: int, error: OSError) -> CallbackBindError:
    return CallbackBindError(host, port, error.strerror or str(error))


class _CallbackHTTPServer(HTTPServer):
    listener: CallbackListener
    request_timeout: float = POLL_INTERVAL


class _CallbackHTTPServerV6(_CallbackHTTPServer):
    address_family = socket.AF_INET6


class _CallbackRequestHandler(BaseHTTPRequestHandler):
    server: _CallbackHTTPServer

    def setup(self) -> None:
        # A connection that sends nothing must not outlast one poll interval
        self.timeout = self.server.request_timeout
        super().setup()

    def do_GET(self) -> None:
        listener = self.server.listener
        parsed = urlsplit(self.path)

        if parsed.path != listener.path:
            self._respond(404, NOT_FOUND_HTML)
            return
        if listener._outcome is not None:
            logger.warning("Ignoring repeated authorization callback")
            self._respond(404, NOT_FOUND_HTML)
            return

        outcome = _parse_callback(parsed.query)
        listener._outcome = outcome
        status, page = _render_page(
            outcome, listener.success_html, listener.error_html
        )
        self._respond(status, page)

    def _respond(self, status: int, page: str) -> None:
        body = page.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(f"Callback listener: {format % args}")


class CallbackListener:
    """Blocking single-use listener for the authorization redirect.

    Args:
        port: Port to bind, 0 picks a free one
        path: Callback path from the redirect URI
        host: Loopback address to bind
        success_html: Page shown to the browser after a successful redirect
        error_html: Page shown after an error, with an ``{error}`` placeholder
    """

    def __init__(
        self,
        port: int = 0,
        path: str = "/callback",
        host: str = "127.0.0.1",
        success_html: str = DEFAULT_SUCCESS_HTML,
        error_html: str = DEFAULT_ERROR_HTML,
    ):
        self.host = host
        self.path = path
        self.success_html = success_html
        self.error_html = error_html
        self.state = ListenerState.IDLE
        self._requested_port = port
        self._server: _CallbackHTTPServer | None = None
        self._outcome: AuthorizationResponse | OAuth2Error | None = None
        self._cancelled = threading.Event()

    @property
    def port(self) -> int:
        """Bound port once listening, otherwise the requested port."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._requested_port

    def start(self) -> Self:
        """Bind the callback port.

        Raises:
            CallbackBindError: If the port is unavailable
        """
        if self.state is not ListenerState.IDLE:
            raise RuntimeError(f"Listener cannot start from state {self.state.value}")

        server_class = _CallbackHTTPServerV6 if ":" in self.host else _CallbackHTTPServer
        try:
            server = server_class(
                (self.host, self._requested_port), _CallbackRequestHandler
            )
        except OSError as e:
            raise _bind_error(self.host, self._requested_port, e) from e

        server.listener = self
        self._server = server
        self.state = ListenerState.LISTENING
        logger.debug(f"Callback listener bound to {self.host}:{self.port}{self.path}")
        return self

    def wait_for_callback(self, timeout: float) -> AuthorizationResponse:
        """Block until the redirect arrives, the timeout elapses or cancel() is called.

        The listener is closed when this returns or raises.

        Returns:
            AuthorizationResponse carrying the authorization code

        Raises:
            ProviderError: If the redirect carried an OAuth error
            RedirectUriParseError: If the redirect query was malformed
            CallbackTimeoutError: If nothing arrived within ``timeout`` seconds
            AuthorizationCancelledError: If cancel() was called
        """
        if self.state is not ListenerState.LISTENING or self._server is None:
            raise RuntimeError(f"Listener is not listening (state {self.state.value})")

        deadline = time.monotonic() + timeout
        try:
            while self._outcome is None:
                if self._cancelled.is_set():
                    self.state = ListenerState.CANCELLED
                    raise AuthorizationCancelledError("Authorization was cancelled")

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.state = ListenerState.TIMED_OUT
                    raise CallbackTimeoutError(timeout)

                self._server.timeout = min(remaining, POLL_INTERVAL)
                self._server.request_timeout = self._server.timeout
                self._server.handle_request()

            self.state = ListenerState.RECEIVED
            return _resolve(self._outcome)
        finally:
            self.close()

    def cancel(self) -> None:
        """Abandon the wait. Safe to call from another thread."""
        self._cancelled.set()

    def close(self) -> None:
        """Release the socket. Idempotent."""
        if self._server is not None:
            self._server.server_close()
            self._server = None
            logger.debug("Callback listener closed")
        self.state = ListenerState.CLOSED

    def __enter__(self) -> Self:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class AsyncCallbackListener:
    """Event loop listener for the authorization redirect.

    Serves a one-route Starlette app with uvicorn on a socket bound by the
    listener itself. Cancelling the task awaiting :meth:`wait_for_callback`
    closes the server before ``asyncio.CancelledError`` propagates.

    Args:
        port: Port to bind, 0 picks a free one
        path: Callback path from the redirect URI
        host: Loopback address to bind
        success_html: Page shown to the browser after a successful redirect
        error_html: Page shown after an error, with an ``{error}`` placeholder
    """

    def __init__(
        self,
        port: int = 0,
        path: str = "/callback",
        host: str = "127.0.0.1",
        success_html: str = DEFAULT_SUCCESS_HTML,
        error_html: str = DEFAULT_ERROR_HTML,
    ):
        self.host = host
        self.path = path
        self.success_html = success_html
        self.error_html = error_html
        self.state = ListenerState.IDLE
        self._requested_port = port
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._outcome: asyncio.Future[AuthorizationResponse | OAuth2Error] | None = None
        self._app = Starlette(routes=[Route(path, self._handle_callback, methods=["GET"])])

    @property
    def port(self) -> int:
        """Bound port once listening, otherwise the requested port."""
        if self._socket is not None:
            return self._socket.getsockname()[1]
        return self._requested_port

    async def start(self) -> Self:
        """Bind the callback port and start serving.

        Raises:
            CallbackBindError: If the port is unavailable
        """
        if self.state is not ListenerState.IDLE:
            raise RuntimeError(f"Listener cannot start from state {self.state.value}")

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self._requested_port))
        except OSError as e:
            sock.close()
            raise _bind_error(self.host, self._requested_port, e) from e

        self._socket = sock
        self._outcome = asyncio.get_running_loop().create_future()

        config = uvicorn.Config(
            app=self._app,
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))
        self.state = ListenerState.LISTENING

        try:
            while not self._server.started:
                if self._serve_task.done():
                    self._serve_task.result()
                    raise CallbackBindError(
                        self.host, self._requested_port, "server stopped during startup"
                    )
                await asyncio.sleep(0.01)
        except BaseException:
            await self.close()
            raise

        logger.debug(f"Callback listener serving on {self.host}:{self.port}{self.path}")
        return self

    async def _handle_callback(self, request: Request) -> HTMLResponse:
        if self._outcome is None or self._outcome.done():
            logger.warning("Ignoring repeated authorization callback")
            return HTMLResponse(NOT_FOUND_HTML, status_code=404)

        outcome = _parse_callback(request.url.query)
        self._outcome.set_result(outcome)
        status, page = _render_page(outcome, self.success_html, self.error_html)
        return HTMLResponse(page, status_code=status)

    async def wait_for_callback(self, timeout: float) -> AuthorizationResponse:
        """Suspend until the redirect arrives, the timeout elapses or cancel() is called.

        The listener is closed when this returns or raises.

        Returns:
            AuthorizationResponse carrying the authorization code

        Raises:
            ProviderError: If the redirect carried an OAuth error
            RedirectUriParseError: If the redirect query was malformed
            CallbackTimeoutError: If nothing arrived within ``timeout`` seconds
            AuthorizationCancelledError: If cancel() was called or the server stopped
        """
        if self.state is not ListenerState.LISTENING or self._outcome is None:
            raise RuntimeError(f"Listener is not listening (state {self.state.value})")

        try:
            done, _ = await asyncio.wait(
                {self._outcome, self._serve_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if not done:
                self.state = ListenerState.TIMED_OUT
                raise CallbackTimeoutError(timeout)

            if not self._outcome.done() or self._outcome.cancelled():
                self.state = ListenerState.CANCELLED
                raise AuthorizationCancelledError("Authorization was cancelled")

            self.state = ListenerState.RECEIVED
            return _resolve(self._outcome.result())
        except asyncio.CancelledError:
            self.state = ListenerState.CANCELLED
            raise
        finally:
            await self.close()

    def cancel(self) -> None:
        """Abandon the wait from another coroutine."""
        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()

    async def close(self) -> None:
        """Stop the server and release the socket. Idempotent.

        A failure inside the server is logged, not raised, so it cannot
        replace the error that led to the close.
        """
        if self._server is not None:
            self._server.should_exit = True
        try:
            if self._serve_task is not None:
                serve_task, self._serve_task = self._serve_task, None
                try:
                    await serve_task
                except Exception as e:
                    logger.warning(f"Callback server stopped with error: {e!r}")
        finally:
            if self._socket is not None:
                self._socket.close()
                self._socket = None
                logger.debug("Callback listener closed")
            self._server = None
            self.state = ListenerState.CLOSED

    async def __aenter__(self) -> Self:
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
