"""PKCE (Proof Key for Code Exchange) parameter generation.

Implements RFC 7636 S256 code challenges so an authorization code can only
be redeemed by the client that requested it.
"""

from __future__ import annotations

import base64
import hashlib

from authflow.models.errors import PKCEError
from authflow.models.security import PKCEParameters
from authflow.primitives.random import UNRESERVED_ALPHABET, generate_secure_string

CODE_VERIFIER_LENGTH = 64


def derive_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a code verifier.

    RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))

    Args:
        code_verifier: The code verifier to hash

    Returns:
        Base64url-encoded SHA256 digest without padding (43 characters)
    """
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()

    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class PKCEManager:
    """Generates PKCE parameters for authorization code flows.

    A fresh verifier is produced for every call. Parameters must never be
    reused across authorization attempts.
    """

    def __init__(self, verifier_length: int = CODE_VERIFIER_LENGTH):
        self.verifier_length = verifier_length

    def generate_parameters(self) -> PKCEParameters:
        """Generate a new code verifier and its S256 challenge.

        Returns:
            PKCEParameters: Immutable parameters for one authorization attempt

        Raises:
            PKCEError: If the verifier length is outside RFC 7636 bounds
        """
        code_verifier = generate_secure_string(
            self.verifier_length, UNRESERVED_ALPHABET
        )
        try:
            return PKCEParameters(
                code_verifier=code_verifier,
                code_challenge=derive_code_challenge(code_verifier),
            )
        except ValueError as e:
            raise PKCEError(f"Failed to generate PKCE parameters: {e}") from e
