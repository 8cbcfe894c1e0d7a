"""
Append-only job log files.

One plain UTF-8 text file per job record, named after the environment and the
job. Credentials passed on command lines are masked before a line reaches the
disk, so nothing secret is ever persisted. Each write is flushed straight
away: pollers read the file while the job is still running.

Log names are sanitized into a safe filename. Files written by older releases
under the raw, unsanitized name are still found and appended to.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from deckhand.errors import LogIOError
from deckhand.logging_config import get_logger

logger = get_logger(__name__)

NOT_CREATED_MESSAGE = "Log has not been created yet."

MASK = "********"
NEWLINE = "\n"

# --password secret, --password=secret, --db-password "two words", ...
# An unterminated quote runs to the end of the line.
_SECRET_FLAG = re.compile(
    r"""(--(?:[\w-]*-)?password(?:=|\s+))('[^']*'|"[^"]*"|'.*|".*|\S+)""",
    re.IGNORECASE,
)

_DISALLOWED = re.compile(r"[^a-z0-9.-]+")
_DASHES = re.compile(r"-{2,}")
_DASH_AROUND_DOT = re.compile(r"-*\.-*")


def sanitize_log_name(name: str) -> str:
    """Lower-case filename containing only ``a-z 0-9 . -``.

    >>> sanitize_log_name("SomeSortOf Filename (UAT).log")
    'somesortof-filename-uat.log'
    """
    clean = _DISALLOWED.sub("-", name.lower())
    clean = _DASHES.sub("-", clean)
    clean = _DASH_AROUND_DOT.sub(".", clean)
    clean = clean.lstrip(".-")
    return clean.rstrip("-")


def mask_secrets(line: str) -> str:
    """Replace the value of every password-style flag with a fixed mask."""
    return _SECRET_FLAG.sub(lambda m: m.group(1) + MASK, line)


class DeployLog:
    """A single job's log file."""

    def __init__(self, name: str, root_dir: str | Path) -> None:
        self._name = name
        self._root = Path(root_dir)

    @property
    def name(self) -> str:
        return self._name

    @property
    def sanitized_path(self) -> Path:
        return self._root / sanitize_log_name(self._name)

    def _legacy_path(self) -> Path | None:
        # The raw name is only usable when it is a plain filename
        raw = Path(self._name)
        if raw.name != self._name or self._name in ("", ".", ".."):
            return None
        return self._root / raw

    @property
    def path(self) -> Path | None:
        """The file this log lives in, or None when it has not been written yet."""
        legacy = self._legacy_path()
        if legacy is not None and legacy.is_file():
            return legacy
        if self.sanitized_path.is_file():
            return self.sanitized_path
        return None

    def exists(self) -> bool:
        return self.path is not None

    async def write(self, message: str) -> None:
        """Append one line, masking credentials, and flush it to disk."""
        target = self.path or self.sanitized_path
        stamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{stamp}] {mask_secrets(message.rstrip(NEWLINE))}\n"
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "a", encoding="utf-8") as f:
                await f.write(line)
                await f.flush()
        except OSError as e:
            raise LogIOError(self._name, e) from e

    async def read(self) -> str:
        """Full log content, or a fixed message when the log does not exist."""
        path = self.path
        if path is None:
            return NOT_CREATED_MESSAGE
        try:
            async with aiofiles.open(path, encoding="utf-8", errors="replace") as f:
                return await f.read()
        except FileNotFoundError:
            return NOT_CREATED_MESSAGE

    async def delete(self) -> None:
        path = self.path
        if path is not None:
            await aiofiles.os.remove(path)
            logger.info("Job log deleted", log=str(path))


class LogStore:
    """Hands out DeployLog objects rooted in one directory."""

    def __init__(self, root_dir: str | Path) -> None:
        self._root = Path(root_dir)

    @property
    def root_dir(self) -> Path:
        return self._root

    def open(self, name: str) -> DeployLog:
        return DeployLog(name, self._root)

    async def write(self, name: str, message: str) -> None:
        await self.open(name).write(message)

    async def read(self, name: str) -> str:
        return await self.open(name).read()

    def exists(self, name: str) -> bool:
        return self.open(name).exists()
