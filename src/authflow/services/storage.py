"""Token file storage.

Persists a :class:`TokenRecord` as JSON at a location chosen by the
caller. The path is passed on every call; the store keeps no default
location of its own.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from authflow.models.errors import TokenFileNotFoundError, TokenFileParseError
from authflow.models.tokens import TokenRecord

logger = logging.getLogger(__name__)

StrPath = str | os.PathLike[str]


class TokenStore:
    """Saves, loads and refreshes token records on disk.

    Args:
        clock: Returns the current Unix timestamp. Override in tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def save(self, path: StrPath, record: TokenRecord) -> None:
        """Write a record atomically.

        The JSON is written to a temporary file in the target directory
        and renamed over the destination, so a crash never leaves a
        partial file behind. On POSIX the file is readable by the owner
        only.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
        )
        try:
            if os.name != "nt":
                os.fchmod(fd, stat.S_IRUSR | stat.S_IWUSR)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.model_dump_json(indent=2, exclude_none=True))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info(f"Token file written to {target}")

    def load(self, path: StrPath) -> TokenRecord:
        """Read a record.

        Raises:
            TokenFileNotFoundError: If the file does not exist
            TokenFileParseError: If the content is not a valid record
        """
        target = Path(path)
        try:
            content = target.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise TokenFileNotFoundError(f"Token file not found: {target}") from e
        except UnicodeDecodeError as e:
            raise TokenFileParseError(f"Token file is not valid UTF-8: {target}") from e

        try:
            return TokenRecord.model_validate_json(content)
        except ValidationError as e:
            raise TokenFileParseError(f"Invalid token file {target}: {e}") from e

    def is_expired(self, record: TokenRecord, buffer_seconds: float = 60) -> bool:
        """True when ``now >= issued_at + expires_in - buffer_seconds``."""
        return record.is_expired(buffer_seconds=buffer_seconds, now=self._clock())

    def update(
        self,
        path: StrPath,
        access_token: str,
        expires_in: int,
        refresh_token: str | None = None,
        scope: str | None = None,
    ) -> TokenRecord:
        """Replace the access token in an existing token file.

        ``issued_at`` is reset to now. The stored refresh token is only
        overwritten when a non-empty ``refresh_token`` is supplied, since
        providers need not rotate it on every refresh.

        ``issued_at + expires_in`` is expected never to decrease across
        updates. The provider has the final say, so an earlier expiry is
        written anyway and logged as a warning. Use :meth:`save` to reset a
        record explicitly.

        Returns:
            The updated record, as written

        Raises:
            TokenFileNotFoundError: If the file does not exist
            TokenFileParseError: If the existing content is invalid
        """
        record = self.load(path)
        previous_expiry = record.expires_at

        record.access_token = access_token
        record.expires_in = expires_in
        record.issued_at = self._clock()
        if refresh_token:
            record.refresh_token = refresh_token
        if scope:
            record.scope = scope

        if record.expires_at < previous_expiry:
            logger.warning(
                f"Updated token for {path} expires earlier than the one it replaces"
            )

        self.save(path, record)
        return record

    def clear(self, path: StrPath) -> None:
        """Delete a token file. A missing file is not an error."""
        Path(path).unlink(missing_ok=True)
