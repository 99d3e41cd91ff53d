"""Cryptographically secure random strings for OAuth state and PKCE verifiers."""

from __future__ import annotations

import secrets
import string

from authflow.models.errors import ConfigurationError

# RFC 7636 Section 4.1 unreserved characters
UNRESERVED_ALPHABET = string.ascii_letters + string.digits + "-._~"

# base64url alphabet, safe in a query string without escaping
URL_SAFE_ALPHABET = string.ascii_letters + string.digits + "-_"


def generate_secure_string(length: int, alphabet: str = URL_SAFE_ALPHABET) -> str:
    """Return ``length`` symbols drawn uniformly from ``alphabet``.

    Symbols come from :func:`secrets.choice`, which uses the operating
    system's CSPRNG. If that source fails the error propagates.

    Args:
        length: Number of symbols to produce, must be positive
        alphabet: Symbols to draw from, must be non-empty

    Returns:
        Random string of exactly ``length`` characters

    Raises:
        ConfigurationError: If length is not positive or alphabet is empty
    """
    if length <= 0:
        raise ConfigurationError(f"Random string length must be positive, got {length}")
    if not alphabet:
        raise ConfigurationError("Random string alphabet must not be empty")

    return "".join(secrets.choice(alphabet) for _ in range(length))
