"""OAuth 2.0 authorization code flow orchestration.

Coordinates state and PKCE generation, the local callback listener, the
code exchange and token storage into one call. Every attempt uses fresh
state and PKCE values; any failure aborts the attempt and a new run is
required to retry.
"""

from __future__ import annotations

import inspect
import logging
import webbrowser
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self
from urllib.parse import urlsplit, urlunsplit

from authflow.models.errors import ProviderError, StateMismatchError, TokenRefreshError
from authflow.models.flow import AuthorizationRequest, AuthorizationResponse
from authflow.models.security import PKCEParameters
from authflow.models.tokens import (
    DEFAULT_EXPIRES_IN,
    AuthorizationCodeGrant,
    RefreshTokenGrant,
    TokenRecord,
    TokenResponse,
)
from authflow.primitives.pkce import PKCEManager
from authflow.services.callback import (
    DEFAULT_ERROR_HTML,
    DEFAULT_SUCCESS_HTML,
    AsyncCallbackListener,
    CallbackListener,
)
from authflow.services.security import (
    generate_state,
    parse_loopback_redirect_uri,
    validate_state,
)
from authflow.services.storage import StrPath, TokenStore
from authflow.services.tokens import (
    AsyncTokenExchanger,
    TokenExchanger,
    parse_token_response,
)
from authflow.transport.base import AsyncTransport, SyncTransport, TokenHttpResponse
from authflow.transport.http import AsyncHttpxTransport, HttpxTransport

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_TIMEOUT = 300.0


@dataclass
class _FlowAttempt:
    """Values owned by one in-flight authorization attempt."""

    authorize_url: str
    client_id: str
    redirect_uri: str
    host: str
    port: int
    path: str
    scope: tuple[str, ...]
    access_type: str | None
    state: str
    pkce: PKCEParameters | None

    def bind(self, port: int) -> None:
        """Point the redirect URI at the port the listener actually bound."""
        if port == self.port:
            return
        parts = urlsplit(self.redirect_uri)
        host = f"[{self.host}]" if ":" in self.host else self.host
        self.redirect_uri = urlunsplit(parts._replace(netloc=f"{host}:{port}"))
        self.port = port

    def authorization_url(self) -> str:
        return AuthorizationRequest(
            authorization_endpoint=self.authorize_url,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            state=self.state,
            scope=self.scope,
            access_type=self.access_type,
            code_challenge=self.pkce.code_challenge if self.pkce else None,
        ).build_authorization_url()

    def code_grant(self, response: AuthorizationResponse) -> dict[str, str]:
        return AuthorizationCodeGrant(
            code=response.code,
            redirect_uri=self.redirect_uri,
            code_verifier=self.pkce.code_verifier if self.pkce else None,
        ).to_form_data()


class _OrchestratorBase:
    def __init__(
        self,
        token_store: TokenStore | None,
        open_authorization_url: Callable[[str], Any],
        callback_timeout: float,
        expiry_buffer: float,
        success_html: str,
        error_html: str,
        pkce_manager: PKCEManager | None,
    ):
        self.token_store = token_store or TokenStore()
        self.open_authorization_url = open_authorization_url
        self.callback_timeout = callback_timeout
        self.expiry_buffer = expiry_buffer
        self.success_html = success_html
        self.error_html = error_html
        self.pkce_manager = pkce_manager or PKCEManager()

    def _begin(
        self,
        authorize_url: str,
        client_id: str,
        redirect_uri: str,
        scope: Sequence[str],
        port: int | None,
        use_pkce: bool,
        access_type: str | None,
    ) -> _FlowAttempt:
        host, uri_port, path = parse_loopback_redirect_uri(redirect_uri)
        attempt = _FlowAttempt(
            authorize_url=authorize_url,
            client_id=client_id,
            redirect_uri=redirect_uri,
            host=host,
            port=uri_port,
            path=path,
            scope=tuple(scope),
            access_type=access_type,
            state=generate_state(),
            pkce=self.pkce_manager.generate_parameters() if use_pkce else None,
        )
        if port is not None:
            attempt.bind(port)
        return attempt

    def _listener_kwargs(self, attempt: _FlowAttempt) -> dict[str, Any]:
        return {
            "port": attempt.port,
            "path": attempt.path,
            "host": attempt.host,
            "success_html": self.success_html,
            "error_html": self.error_html,
        }

    def _announce(self, url: str) -> Any:
        logger.info(f"Authorization URL: {url}")
        return self.open_authorization_url(url)

    @staticmethod
    def _check_provider_error_state(attempt: _FlowAttempt, error: ProviderError) -> None:
        if error.state is not None:
            try:
                validate_state(attempt.state, error.state)
            except StateMismatchError as e:
                raise StateMismatchError(
                    f"State mismatch in error response ({error.error})"
                ) from e

    def _complete(
        self, raw_response: TokenHttpResponse, token_path: StrPath | None
    ) -> TokenRecord:
        token_response = parse_token_response(raw_response)
        record = token_response.to_token_record()
        logger.info("Token exchange successful")

        if token_path is not None:
            self.token_store.save(token_path, record)
        return record

    def _load_refreshable(self, token_path: StrPath) -> TokenRecord:
        record = self.token_store.load(token_path)
        if not record.can_refresh():
            raise TokenRefreshError(f"Token file {token_path} has no refresh token")
        return record

    def _store_refreshed(
        self, token_path: StrPath, token_response: TokenResponse
    ) -> TokenRecord:
        logger.info("Successfully refreshed access token")
        return self.token_store.update(
            token_path,
            access_token=token_response.access_token,
            expires_in=(
                token_response.expires_in
                if token_response.expires_in is not None
                else DEFAULT_EXPIRES_IN
            ),
            refresh_token=token_response.refresh_token,
            scope=token_response.scope,
        )


class AuthorizationOrchestrator(_OrchestratorBase):
    """Runs the authorization code flow on the calling thread.

    Args:
        transport: Blocking transport for token requests. An httpx-backed
            one is created (and closed by :meth:`close`) when omitted.
        token_store: Store used when a token path is given
        open_authorization_url: Called with the authorization URL, e.g. to
            open a browser
        callback_timeout: Seconds to wait for the redirect
        expiry_buffer: Seconds before expiry at which a token counts as expired
        success_html: Page shown to the browser after a successful redirect
        error_html: Page shown after an error, with an ``{error}`` placeholder
        pkce_manager: PKCE parameter generator
        http_timeout: Request timeout for the default transport
    """

    def __init__(
        self,
        transport: SyncTransport | None = None,
        token_store: TokenStore | None = None,
        open_authorization_url: Callable[[str], Any] = webbrowser.open,
        callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        expiry_buffer: float = 60,
        success_html: str = DEFAULT_SUCCESS_HTML,
        error_html: str = DEFAULT_ERROR_HTML,
        pkce_manager: PKCEManager | None = None,
        http_timeout: float = 30.0,
    ):
        super().__init__(
            token_store,
            open_authorization_url,
            callback_timeout,
            expiry_buffer,
            success_html,
            error_html,
            pkce_manager,
        )
        self.transport = transport or HttpxTransport(timeout=http_timeout)
        self.exchanger = TokenExchanger(self.transport)
        self.listener: CallbackListener | None = None

    def run(
        self,
        authorize_url: str,
        token_url: str,
        client_id: str,
        client_secret: str | None,
        redirect_uri: str,
        scope: Sequence[str] = (),
        port: int | None = None,
        use_pkce: bool = True,
        access_type: str | None = None,
        use_basic_auth: bool = False,
        token_path: StrPath | None = None,
    ) -> TokenRecord:
        """Run one authorization attempt.

        Builds the authorization URL, listens on the redirect URI's port
        and path (or ``port`` when given, 0 for any free port), hands the
        URL to ``open_authorization_url``, waits for the redirect, checks
        state, exchanges the code and saves the token when ``token_path``
        is set.

        Returns:
            TokenRecord for the newly issued token

        Raises:
            ConfigurationError: If the redirect URI cannot be listened on
            CallbackBindError: If the port is unavailable
            CallbackTimeoutError: If no redirect arrived in time
            AuthorizationCancelledError: If the listener was cancelled
            StateMismatchError: If the redirect state does not match
            ProviderError: If the provider denied the request or the code
            RedirectUriParseError: If the redirect was malformed
            TransportError: If the token endpoint cannot be reached
            TokenResponseError: If the token response cannot be understood
        """
        logger.info(f"Starting authorization code flow for client {client_id}")
        attempt = self._begin(
            authorize_url, client_id, redirect_uri, scope, port, use_pkce, access_type
        )
        authorization_url = attempt.authorization_url() if attempt.port else None

        with CallbackListener(**self._listener_kwargs(attempt)) as listener:
            if authorization_url is None:
                attempt.bind(listener.port)
                authorization_url = attempt.authorization_url()
            self.listener = listener

            try:
                self._announce(authorization_url)
                response = listener.wait_for_callback(self.callback_timeout)
            except ProviderError as e:
                self._check_provider_error_state(attempt, e)
                raise
            finally:
                self.listener = None

        validate_state(attempt.state, response.state)

        logger.debug("Exchanging authorization code for tokens")
        raw_response = self.exchanger.exchange(
            token_url,
            attempt.code_grant(response),
            client_id,
            client_secret,
            use_basic_auth,
        )
        return self._complete(raw_response, token_path)

    def cancel(self) -> None:
        """Abandon the running attempt. Safe to call from another thread."""
        if self.listener is not None:
            self.listener.cancel()

    def refresh(
        self,
        token_url: str,
        token_path: StrPath,
        client_id: str,
        client_secret: str | None = None,
        scope: str | None = None,
        use_basic_auth: bool = False,
    ) -> TokenRecord:
        """Refresh the token stored at ``token_path`` and update the file.

        Raises:
            TokenFileNotFoundError: If the token file does not exist
            TokenRefreshError: If the stored record has no refresh token
            ProviderError: If the provider rejected the refresh
            TransportError: If the token endpoint cannot be reached
        """
        record = self._load_refreshable(token_path)
        raw_response = self.exchanger.exchange(
            token_url,
            RefreshTokenGrant(record.refresh_token, scope).to_form_data(),
            client_id,
            client_secret,
            use_basic_auth,
        )
        return self._store_refreshed(token_path, parse_token_response(raw_response))

    def get_valid_access_token(
        self,
        token_url: str,
        token_path: StrPath,
        client_id: str,
        client_secret: str | None = None,
        use_basic_auth: bool = False,
    ) -> str:
        """Return the stored access token, refreshing it first if expired."""
        record = self.token_store.load(token_path)
        if self.token_store.is_expired(record, self.expiry_buffer):
            record = self.refresh(
                token_url,
                token_path,
                client_id,
                client_secret,
                use_basic_auth=use_basic_auth,
            )
        return record.access_token

    def close(self) -> None:
        """Close the transport."""
        self.transport.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class AsyncAuthorizationOrchestrator(_OrchestratorBase):
    """Runs the authorization code flow on the running event loop.

    Waiting for the redirect and the token exchange are the only
    suspension points. Cancelling the task running :meth:`run` releases
    the callback port. ``open_authorization_url`` may be a plain function
    or a coroutine function.

    Takes the same arguments as :class:`AuthorizationOrchestrator`, with an
    :class:`AsyncTransport`.
    """

    def __init__(
        self,
        transport: AsyncTransport | None = None,
        token_store: TokenStore | None = None,
        open_authorization_url: Callable[[str], Any] = webbrowser.open,
        callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        expiry_buffer: float = 60,
        success_html: str = DEFAULT_SUCCESS_HTML,
        error_html: str = DEFAULT_ERROR_HTML,
        pkce_manager: PKCEManager | None = None,
        http_timeout: float = 30.0,
    ):
        super().__init__(
            token_store,
            open_authorization_url,
            callback_timeout,
            expiry_buffer,
            success_html,
            error_html,
            pkce_manager,
        )
        self.transport = transport or AsyncHttpxTransport(timeout=http_timeout)
        self.exchanger = AsyncTokenExchanger(self.transport)
        self.listener: AsyncCallbackListener | None = None

    async def run(
        self,
        authorize_url: str,
        token_url: str,
        client_id: str,
        client_secret: str | None,
        redirect_uri: str,
        scope: Sequence[str] = (),
        port: int | None = None,
        use_pkce: bool = True,
        access_type: str | None = None,
        use_basic_auth: bool = False,
        token_path: StrPath | None = None,
    ) -> TokenRecord:
        """Run one authorization attempt. See :meth:`AuthorizationOrchestrator.run`."""
        logger.info(f"Starting authorization code flow for client {client_id}")
        attempt = self._begin(
            authorize_url, client_id, redirect_uri, scope, port, use_pkce, access_type
        )
        authorization_url = attempt.authorization_url() if attempt.port else None

        async with AsyncCallbackListener(**self._listener_kwargs(attempt)) as listener:
            if authorization_url is None:
                attempt.bind(listener.port)
                authorization_url = attempt.authorization_url()
            self.listener = listener

            try:
                opened = self._announce(authorization_url)
                if inspect.isawaitable(opened):
                    await opened
                response = await listener.wait_for_callback(self.callback_timeout)
            except ProviderError as e:
                self._check_provider_error_state(attempt, e)
                raise
            finally:
                self.listener = None

        validate_state(attempt.state, response.state)

        logger.debug("Exchanging authorization code for tokens")
        raw_response = await self.exchanger.exchange(
            token_url,
            attempt.code_grant(response),
            client_id,
            client_secret,
            use_basic_auth,
        )
        return self._complete(raw_response, token_path)

    def cancel(self) -> None:
        """Abandon the running attempt from another coroutine."""
        if self.listener is not None:
            self.listener.cancel()

    async def refresh(
        self,
        token_url: str,
        token_path: StrPath,
        client_id: str,
        client_secret: str | None = None,
        scope: str | None = None,
        use_basic_auth: bool = False,
    ) -> TokenRecord:
        """Refresh the token stored at ``token_path`` and update the file."""
        record = self._load_refreshable(token_path)
        raw_response = await self.exchanger.exchange(
            token_url,
            RefreshTokenGrant(record.refresh_token, scope).to_form_data(),
            client_id,
            client_secret,
            use_basic_auth,
        )
        return self._store_refreshed(token_path, parse_token_response(raw_response))

    async def get_valid_access_token(
        self,
        token_url: str,
        token_path: StrPath,
        client_id: str,
        client_secret: str | None = None,
        use_basic_auth: bool = False,
    ) -> str:
        """Return the stored access token, refreshing it first if expired."""
        record = self.token_store.load(token_path)
        if self.token_store.is_expired(record, self.expiry_buffer):
            record = await self.refresh(
                token_url,
                token_path,
                client_id,
                client_secret,
                use_basic_auth=use_basic_auth,
            )
        return record.access_token

    async def close(self) -> None:
        """Close the transport."""
        await self.transport.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
