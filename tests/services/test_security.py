import pytest

from authflow.models.errors import ConfigurationError, StateMismatchError
from authflow.primitives.random import URL_SAFE_ALPHABET
from authflow.services.security import (
    STATE_LENGTH,
    generate_state,
    parse_loopback_redirect_uri,
    validate_state,
)


class TestState:
    def test_generate_state_shape(self) -> None:
        state = generate_state()

        assert len(state) == STATE_LENGTH
        assert set(state) <= set(URL_SAFE_ALPHABET)

    def test_generate_state_is_unique(self) -> None:
        assert generate_state() != generate_state()

    def test_validate_state_accepts_match(self) -> None:
        # Should not raise
        validate_state("S1", "S1")

    def test_validate_state_rejects_mismatch(self) -> None:
        with pytest.raises(StateMismatchError):
            validate_state("S1", "S2")

    def test_validate_state_rejects_missing(self) -> None:
        with pytest.raises(StateMismatchError):
            validate_state("S1", None)

    def test_validate_state_rejects_prefix(self) -> None:
        with pytest.raises(StateMismatchError):
            validate_state("S1-long", "S1")


class TestParseLoopbackRedirectUri:
    @pytest.mark.parametrize(
        ("uri", "expected"),
        [
            ("http://localhost:8080/cb", ("localhost", 8080, "/cb")),
            ("http://127.0.0.1:0/callback", ("127.0.0.1", 0, "/callback")),
            ("http://[::1]:9000/cb", ("::1", 9000, "/cb")),
            ("http://localhost", ("localhost", 80, "/")),
        ],
    )
    def test_valid_loopback_uris(self, uri: str, expected: tuple) -> None:
        assert parse_loopback_redirect_uri(uri) == expected

    @pytest.mark.parametrize(
        "uri",
        [
            "https://localhost:8080/cb",
            "http://example.com/cb",
            "http://10.0.0.1:8080/cb",
            "http://localhost:99999/cb",
            "not a uri",
        ],
    )
    def test_rejects_non_loopback(self, uri: str) -> None:
        with pytest.raises(ConfigurationError):
            parse_loopback_redirect_uri(uri)
