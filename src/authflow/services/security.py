"""CSRF state and redirect URI checks for the authorization code flow."""

from __future__ import annotations

import secrets
from urllib.parse import urlparse

from authflow.models.errors import ConfigurationError, StateMismatchError
from authflow.primitives.random import URL_SAFE_ALPHABET, generate_secure_string

STATE_LENGTH = 32

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


def generate_state() -> str:
    """Return a fresh 32-character state value for one authorization attempt."""
    return generate_secure_string(STATE_LENGTH, URL_SAFE_ALPHABET)


def validate_state(expected: str, actual: str | None) -> None:
    """Compare the state echoed by the redirect with the one we sent.

    The comparison takes the same time wherever the values differ.

    Raises:
        StateMismatchError: If the redirect carried no state or a different one
    """
    if actual is None:
        raise StateMismatchError("Callback missing required state parameter")
    if not secrets.compare_digest(expected.encode("utf-8"), actual.encode("utf-8")):
        raise StateMismatchError("State parameter mismatch - possible CSRF attack")


def parse_loopback_redirect_uri(redirect_uri: str) -> tuple[str, int, str]:
    """Split a loopback redirect URI into the host, port and path to listen on.

    Args:
        redirect_uri: Redirect URI registered with the provider

    Returns:
        Tuple of (host, port, path). Port defaults to 80 when absent.

    Raises:
        ConfigurationError: If the URI is not a plain-HTTP loopback address
    """
    parsed = urlparse(redirect_uri)

    if parsed.scheme != "http" or parsed.hostname not in LOOPBACK_HOSTS:
        raise ConfigurationError(
            f"Redirect URI must be an http loopback address to listen on: {redirect_uri}"
        )

    try:
        port = parsed.port if parsed.port is not None else 80
    except ValueError as e:
        raise ConfigurationError(f"Invalid port in redirect URI: {redirect_uri}") from e

    return parsed.hostname, port, parsed.path or "/"
