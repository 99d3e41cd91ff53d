"""Exception hierarchy for OAuth 2.0 authorization code flows.

Each failure mode has its own type so callers can tell a retryable outcome
(timeout, transport failure) from a fatal one (state mismatch, provider
rejection) without inspecting messages.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 client errors."""

    pass


class ConfigurationError(OAuth2Error, ValueError):
    """Raised when the client is asked to do something with invalid settings."""

    pass


class PKCEError(OAuth2Error):
    """Raised when PKCE parameter generation fails."""

    pass


class CallbackBindError(OAuth2Error):
    """Raised when the local callback listener cannot bind its port."""

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(f"Cannot listen on {host}:{port}: {reason}")
        self.host = host
        self.port = port


class CallbackTimeoutError(OAuth2Error, TimeoutError):
    """Raised when no authorization callback arrives before the deadline.

    Retryable: run the flow again with fresh state and PKCE values.
    """

    def __init__(self, timeout: float):
        super().__init__(f"No authorization callback received within {timeout:g}s")
        self.timeout = timeout


class AuthorizationCancelledError(OAuth2Error):
    """Raised when the caller abandons an authorization attempt."""

    pass


class AuthorizationCallbackError(OAuth2Error):
    """Raised when the redirect that reached the listener cannot be trusted.

    The fault lies with the redirect, not with the listener.
    """

    pass


class RedirectUriParseError(AuthorizationCallbackError):
    """Raised when the callback query string cannot be parsed."""

    pass


class StateMismatchError(AuthorizationCallbackError):
    """Raised when the redirect state is absent or differs from the one sent.

    Treated as a possible CSRF attempt and never retried.
    """

    pass


class ProviderError(OAuth2Error):
    """Error payload returned by the authorization server (RFC 6749 4.1.2.1, 5.2).

    Raised both for error redirects and for error bodies from the token
    endpoint. The provider's fields are kept verbatim.
    """

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        error_uri: str | None = None,
        state: str | None = None,
        status_code: int | None = None,
    ):
        self.error = error
        self.error_description = error_description
        self.error_uri = error_uri
        self.state = state
        self.status_code = status_code
        super().__init__(self._format())

    def _format(self) -> str:
        message = f"Authorization server returned error: {self.error}"
        if self.error_description:
            message += f" ({self.error_description})"
        if self.error_uri:
            message += f" See: {self.error_uri}"
        return message


class TransportError(OAuth2Error):
    """Raised when the token endpoint cannot be reached.

    The library does not retry; callers may retry with backoff.
    """

    pass


class TokenRefreshError(OAuth2Error):
    """Raised when a stored token cannot be refreshed."""

    pass


class TokenResponseError(OAuth2Error):
    """Raised when a successful token response cannot be understood."""

    pass


class TokenFileNotFoundError(OAuth2Error, FileNotFoundError):
    """Raised when a token file does not exist."""

    pass


class TokenFileParseError(OAuth2Error):
    """Raised when a token file exists but does not hold a valid record."""

    pass
