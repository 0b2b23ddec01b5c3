"""Object stores holding the raw bytes of uploaded documents."""
from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Final

from docassist.errors import DocumentNotFound

_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""
    if not filename:
        filename = "upload"
    sanitized = Path(filename).name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    sanitized = sanitized.strip("._") or "upload"
    return sanitized


def make_object_key(document_id: str, file_name: str) -> str:
    return f"{sanitize_filename(document_id)}/{sanitize_filename(file_name)}"


class ObjectStore(ABC):
    @abstractmethod
    async def put(self, key: str, content: bytes) -> None: ...

    @abstractmethod
    async def get(self, key: str) -> bytes: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...


class InMemoryObjectStore(ObjectStore):
    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}

    async def put(self, key: str, content: bytes) -> None:
        self._objects[key] = bytes(content)

    async def get(self, key: str) -> bytes:
        try:
            return self._objects[key]
        except KeyError as error:
            raise DocumentNotFound(f"No stored object under '{key}'") from error

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)


class LocalObjectStore(ObjectStore):
    """Store objects as files below ``root``; keys map to relative paths."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = [sanitize_filename(part) for part in key.split("/") if part]
        return self.root.joinpath(*parts)

    async def put(self, key: str, content: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as error:
            raise DocumentNotFound(f"No stored object under '{key}'") from error

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)


__all__ = [
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectStore",
    "make_object_key",
    "sanitize_filename",
]
