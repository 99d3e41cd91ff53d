import json
import logging
import os
import stat
from pathlib import Path

import pytest

from authflow.models.errors import TokenFileNotFoundError, TokenFileParseError
from authflow.models.tokens import TokenRecord
from authflow.services.storage import TokenStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTokenStore:
    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.store = TokenStore(clock=self.clock)
        self.record = TokenRecord(
            access_token="A",
            refresh_token="R",
            expires_in=3600,
            issued_at=1000.0,
            token_type="Bearer",
        )

    def test_save_then_load(self, tmp_path: Path) -> None:
        # Arrange
        path = tmp_path / "token.json"

        # Act
        self.store.save(path, self.record)
        loaded = self.store.load(path)

        # Assert
        assert loaded == self.record

    def test_file_layout(self, tmp_path: Path) -> None:
        path = tmp_path / "token.json"

        self.store.save(path, self.record)

        data = json.loads(path.read_text())
        assert data == {
            "access_token": "A",
            "refresh_token": "R",
            "expires_in": 3600,
            "issued_at": 1000.0,
            "token_type": "Bearer",
        }

    def test_save_creates_parent_directories(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "token.json"

        self.store.save(str(path), self.record)

        assert path.exists()

    def test_save_leaves_no_temporary_files(self, tmp_path: Path) -> None:
        path = tmp_path / "token.json"

        self.store.save(path, self.record)
        self.store.save(path, self.record)

        assert [p.name for p in tmp_path.iterdir()] == ["token.json"]

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_file_is_owner_only(self, tmp_path: Path) -> None:
        path = tmp_path / "token.json"

        self.store.save(path, self.record)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(TokenFileNotFoundError):
            self.store.load(tmp_path / "missing.json")

    def test_missing_file_error_is_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            self.store.load(tmp_path / "missing.json")

    @pytest.mark.parametrize(
        "content",
        [
            b"not json",
            b"{}",
            b'{"access_token": "A"}',
            b'{"access_token": "A", "expires_in": "x", "issued_at": 1}',
            b"\xff\xfe\x00",
        ],
    )
    def test_load_invalid_content(self, tmp_path: Path, content: bytes) -> None:
        # Arrange
        path = tmp_path / "token.json"
        path.write_bytes(content)

        # Act & Assert
        with pytest.raises(TokenFileParseError):
            self.store.load(path)

    def test_is_expired_boundary(self) -> None:
        # expires_at = 4600, buffer 60 -> expired from 4540
        self.clock.now = 4539.0
        assert not self.store.is_expired(self.record, buffer_seconds=60)

        self.clock.now = 4540.0
        assert self.store.is_expired(self.record, buffer_seconds=60)

    def test_update_keeps_refresh_token_when_not_rotated(self, tmp_path: Path) -> None:
        # Arrange
        path = tmp_path / "token.json"
        self.store.save(path, self.record)
        self.clock.now = 5000.0

        # Act
        updated = self.store.update(path, access_token="A2", expires_in=3600)

        # Assert
        assert updated.access_token == "A2"
        assert updated.refresh_token == "R"
        assert updated.issued_at == 5000.0
        assert self.store.load(path) == updated

    def test_update_empty_refresh_token_keeps_old(self, tmp_path: Path) -> None:
        path = tmp_path / "token.json"
        self.store.save(path, self.record)

        updated = self.store.update(path, "A2", 3600, refresh_token="")

        assert updated.refresh_token == "R"

    def test_update_rotates_refresh_token(self, tmp_path: Path) -> None:
        path = tmp_path / "token.json"
        self.store.save(path, self.record)

        updated = self.store.update(path, "A2", 3600, refresh_token="R2")

        assert updated.refresh_token == "R2"
        assert self.store.load(path).refresh_token == "R2"

    def test_update_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(TokenFileNotFoundError):
            self.store.update(tmp_path / "missing.json", "A2", 3600)

    def test_update_warns_on_earlier_expiry(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        # Arrange
        path = tmp_path / "token.json"
        self.store.save(path, self.record)

        # Act
        with caplog.at_level(logging.WARNING, logger="authflow.services.storage"):
            self.store.update(path, "A2", expires_in=10)

        # Assert
        assert "expires earlier" in caplog.text

    def test_update_does_not_log_tokens(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "token.json"
        self.store.save(path, self.record)

        with caplog.at_level(logging.DEBUG):
            self.store.update(path, "very-secret-access", 10, "very-secret-refresh")

        assert "very-secret" not in caplog.text

    def test_clear(self, tmp_path: Path) -> None:
        # Arrange
        path = tmp_path / "token.json"
        self.store.save(path, self.record)

        # Act
        self.store.clear(path)
        self.store.clear(path)

        # Assert
        assert not path.exists()
