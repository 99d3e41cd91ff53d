"""Token request, response and record models for OAuth 2.0.

Grant dataclasses produce the form parameters for one grant type; the
token exchanger adds client authentication and sends them. Response and
record models are pydantic so the token endpoint body and the token file
share the same validation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from pydantic import BaseModel, Field

# Lifetime assumed when the provider omits expires_in
DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class AuthorizationCodeGrant:
    """Authorization code exchange parameters (RFC 6749 Section 4.1.3).

    Includes the PKCE code_verifier (RFC 7636) when the authorization
    request carried a code challenge.
    """

    code: str
    redirect_uri: str | None = None
    code_verifier: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": "authorization_code",
            "code": self.code,
        }

        if self.redirect_uri:
            data["redirect_uri"] = self.redirect_uri
        if self.code_verifier:
            data["code_verifier"] = self.code_verifier

        return data


@dataclass(frozen=True)
class RefreshTokenGrant:
    """Refresh token request parameters (RFC 6749 Section 6)."""

    refresh_token: str
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": self.refresh_token,
        }

        if self.scope:
            data["scope"] = self.scope

        return data


@dataclass(frozen=True)
class ClientCredentialsGrant:
    """Client credentials request parameters (RFC 6749 Section 4.4)."""

    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {"grant_type": "client_credentials"}

        if self.scope:
            data["scope"] = self.scope

        return data


@dataclass(frozen=True)
class PasswordGrant:
    """Resource owner password credentials parameters (RFC 6749 Section 4.3)."""

    username: str
    password: str
    scope: str | None = None

    def __repr__(self) -> str:
        return f"PasswordGrant(username={self.username!r}, scope={self.scope!r})"

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": "password",
            "username": self.username,
            "password": self.password,
        }

        if self.scope:
            data["scope"] = self.scope

        return data


class TokenResponse(BaseModel):
    """OAuth 2.0 token response (RFC 6749 Section 5).

    Represents the response from a token endpoint, including both
    successful responses (Section 5.1) and error responses (Section 5.2).
    """

    # Success response fields (RFC 6749 Section 5.1)
    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        """Check if token response indicates success."""
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        """Check if token response indicates an error."""
        return self.error is not None

    def to_token_record(self, issued_at: float | None = None) -> TokenRecord:
        """Convert successful token response to a TokenRecord.

        Args:
            issued_at: Unix timestamp the token was issued at, defaults to now

        Raises:
            ValueError: If response is not successful
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to TokenRecord")

        return TokenRecord(
            access_token=self.access_token,
            refresh_token=self.refresh_token or "",
            expires_in=(
                self.expires_in if self.expires_in is not None else DEFAULT_EXPIRES_IN
            ),
            issued_at=time.time() if issued_at is None else issued_at,
            token_type=self.token_type,
            scope=self.scope,
        )


class TokenRecord(BaseModel):
    """Persisted token state for one authorization grant.

    Owned by the application. Mutated in place on refresh: the access
    token, lifetime and issue time always change, the refresh token only
    when the provider rotates it.
    """

    access_token: str = Field(repr=False)
    refresh_token: str = Field(default="", repr=False)
    expires_in: int
    issued_at: float  # Unix timestamp
    token_type: str | None = None
    scope: str | None = None

    @property
    def expires_at(self) -> float:
        """Absolute Unix timestamp at which the access token expires."""
        return self.issued_at + self.expires_in

    def is_expired(self, buffer_seconds: float = 60, now: float | None = None) -> bool:
        """Check whether the access token should be treated as expired.

        True when ``now >= issued_at + expires_in - buffer_seconds``. A
        buffer at least as long as the token lifetime always reports
        expired.

        Args:
            buffer_seconds: Treat the token as expired this many seconds early
            now: Current Unix timestamp, defaults to ``time.time()``
        """
        if buffer_seconds >= self.expires_in:
            return True

        current = time.time() if now is None else now
        return current >= self.expires_at - buffer_seconds

    def can_refresh(self) -> bool:
        """Check if token can be refreshed."""
        return bool(self.refresh_token)

    def authorization_header(self) -> dict[str, str]:
        """Return the bearer ``Authorization`` header for this token."""
        return {"Authorization": f"{self.token_type or 'Bearer'} {self.access_token}"}
