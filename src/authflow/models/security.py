"""PKCE values carried through one authorization attempt."""

from __future__ import annotations

from dataclasses import dataclass, field

# RFC 7636 Section 4.1 length bounds for code_verifier
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

S256 = "S256"


@dataclass(frozen=True)
class PKCEParameters:
    """Verifier and challenge pair for one authorization attempt.

    The verifier stays on the client until the code exchange; only the
    challenge goes into the authorization URL. ``plain`` is not supported.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str
    code_challenge_method: str = S256

    def __post_init__(self) -> None:
        length = len(self.code_verifier)
        if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
            raise ValueError(
                f"code_verifier length {length} outside "
                f"{MIN_VERIFIER_LENGTH}-{MAX_VERIFIER_LENGTH}"
            )
        if not self.code_challenge:
            raise ValueError("code_challenge must not be empty")
        if self.code_challenge_method != S256:
            raise ValueError(
                f"Unsupported code_challenge_method: {self.code_challenge_method}"
            )
