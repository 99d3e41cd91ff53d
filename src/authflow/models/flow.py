"""Authorization request URLs and redirect callback parsing (RFC 6749 4.1)."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from urllib.parse import parse_qsl, quote, urlencode

from authflow.models.errors import ProviderError, RedirectUriParseError

_CALLBACK_FIELDS = ("code", "state", "error", "error_description", "error_uri")


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters (RFC 6749 Section 4.1.1)."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str | None = None
    state: str | None = None
    scope: Sequence[str] = ()
    access_type: str | None = None
    code_challenge: str | None = None

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        Optional parameters are included only when they have a value. An
        existing query string on the endpoint is preserved.
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
        }

        if self.redirect_uri:
            params["redirect_uri"] = self.redirect_uri
        if self.state:
            params["state"] = self.state
        if self.scope:
            params["scope"] = " ".join(self.scope)
        if self.access_type:
            params["access_type"] = self.access_type
        if self.code_challenge:
            params["code_challenge"] = self.code_challenge
            params["code_challenge_method"] = "S256"

        query = urlencode(params, quote_via=quote)
        base = self.authorization_endpoint

        if "?" not in base:
            return f"{base}?{query}"
        if base.endswith(("?", "&")):
            return f"{base}{query}"
        return f"{base}&{query}"


def build_authorization_url(
    base_url: str,
    client_id: str,
    redirect_uri: str | None = None,
    state: str | None = None,
    scope: Sequence[str] = (),
    access_type: str | None = None,
    code_challenge: str | None = None,
) -> str:
    """Shortcut for ``AuthorizationRequest(...).build_authorization_url()``."""
    return AuthorizationRequest(
        authorization_endpoint=base_url,
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        scope=tuple(scope),
        access_type=access_type,
        code_challenge=code_challenge,
    ).build_authorization_url()


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None

    def to_provider_error(self) -> ProviderError:
        """Convert an error redirect into a ProviderError.

        Raises:
            ValueError: If the response does not carry an error
        """
        if not self.is_error():
            raise ValueError("Cannot convert successful response to ProviderError")

        return ProviderError(
            error=self.error,
            error_description=self.error_description,
            error_uri=self.error_uri,
            state=self.state,
        )

    @classmethod
    def from_query(cls, query: str) -> AuthorizationResponse:
        """Parse the query string of an authorization callback.

        Args:
            query: Raw query string, without the leading ``?``

        Returns:
            AuthorizationResponse: Parsed callback parameters

        Raises:
            RedirectUriParseError: If the query is empty, repeats a callback
                parameter, or carries neither a code nor an error
        """
        if not query:
            raise RedirectUriParseError("Callback carried no query parameters")

        # Empty fields and bare flags are tolerated, as browsers send them
        pairs = parse_qsl(query, keep_blank_values=True)

        params: dict[str, str] = {}
        for key, value in pairs:
            if key in _CALLBACK_FIELDS and key in params:
                raise RedirectUriParseError(f"Duplicate '{key}' parameter in callback")
            params[key] = value

        response = cls(**{name: params.get(name) or None for name in _CALLBACK_FIELDS})

        if not response.is_error() and response.code is None:
            raise RedirectUriParseError("Callback missing authorization code")

        return response
