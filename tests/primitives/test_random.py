import pytest

from authflow.models.errors import ConfigurationError
from authflow.primitives.random import (
    UNRESERVED_ALPHABET,
    URL_SAFE_ALPHABET,
    generate_secure_string,
)


class TestGenerateSecureString:
    @pytest.mark.parametrize("length", [1, 32, 64, 128])
    def test_produces_requested_length(self, length: int) -> None:
        # Act
        value = generate_secure_string(length)

        # Assert
        assert len(value) == length

    def test_only_uses_supplied_alphabet(self) -> None:
        # Arrange
        alphabet = "ab"

        # Act
        value = generate_secure_string(500, alphabet)

        # Assert
        assert set(value) <= set(alphabet)

    def test_default_alphabet_is_url_safe(self) -> None:
        value = generate_secure_string(1000)

        assert set(value) <= set(URL_SAFE_ALPHABET)

    def test_no_collisions_across_many_samples(self) -> None:
        # Act
        samples = {generate_secure_string(32) for _ in range(10_000)}

        # Assert
        assert len(samples) == 10_000

    def test_single_symbol_alphabet(self) -> None:
        assert generate_secure_string(5, "x") == "xxxxx"

    @pytest.mark.parametrize("length", [0, -1])
    def test_non_positive_length_is_rejected(self, length: int) -> None:
        with pytest.raises(ConfigurationError):
            generate_secure_string(length)

    def test_empty_alphabet_is_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            generate_secure_string(10, "")

    def test_configuration_error_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            generate_secure_string(0)

    def test_unreserved_alphabet_matches_rfc_7636(self) -> None:
        assert set("-._~") <= set(UNRESERVED_ALPHABET)
        assert len(UNRESERVED_ALPHABET) == 66
