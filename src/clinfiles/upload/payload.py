"""Handles to the raw bytes of a staged file.

Size and content type are captured when the file is staged and never
change afterwards; the bytes themselves are only read when the transfer
phase runs.
"""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import Protocol

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class FilePayload(Protocol):
    """Read-only view of one file's bytes and declared attributes."""

    @property
    def filename(self) -> str: ...

    @property
    def content_type(self) -> str: ...

    @property
    def size_bytes(self) -> int: ...

    async def read(self) -> bytes: ...


def guess_content_type(filename: str) -> str:
    """Guess a MIME type from *filename*, falling back to octet-stream."""
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_CONTENT_TYPE


class LocalFilePayload:
    """A file on local disk.

    Usage::

        payload = LocalFilePayload.from_path("scans/panoramic.png")
        data = await payload.read()
    """

    def __init__(
        self, path: Path, filename: str, content_type: str, size_bytes: int
    ) -> None:
        self._path = path
        self._filename = filename
        self._content_type = content_type
        self._size_bytes = size_bytes

    @classmethod
    def from_path(
        cls, path: str | Path, content_type: str | None = None
    ) -> LocalFilePayload:
        """Stat *path* and build a payload for it.

        Raises:
            FileNotFoundError: If *path* does not exist.
            IsADirectoryError: If *path* is a directory.
        """
        path = Path(path)
        if path.is_dir():
            raise IsADirectoryError(str(path))
        size = path.stat().st_size
        return cls(
            path=path,
            filename=path.name,
            content_type=content_type or guess_content_type(path.name),
            size_bytes=size,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    async def read(self) -> bytes:
        return await asyncio.to_thread(self._path.read_bytes)

    def __repr__(self) -> str:
        return f"LocalFilePayload({str(self._path)!r}, {self._content_type!r})"


class InMemoryPayload:
    """Bytes already held in memory, e.g. a camera capture."""

    def __init__(
        self, filename: str, data: bytes, content_type: str | None = None
    ) -> None:
        self._filename = filename
        self._data = bytes(data)
        self._content_type = content_type or guess_content_type(filename)

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def size_bytes(self) -> int:
        return len(self._data)

    async def read(self) -> bytes:
        return self._data

    def __repr__(self) -> str:
        return f"InMemoryPayload({self._filename!r}, {len(self._data)} bytes)"
