"""Document stores that resolve stored-document references to bytes."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class DocumentNotFound(Exception):
    """Raised when a document path cannot be read from the store."""


@runtime_checkable
class DocumentStore(Protocol):
    """Interface for fetching stored documents by path."""

    async def fetch(self, file_path: str) -> bytes:
        """Return the document's bytes or raise DocumentNotFound."""
        ...


class LocalDocumentStore:
    """Reads documents from a directory on local disk.

    Paths are resolved relative to ``root`` and may not escape it.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    async def fetch(self, file_path: str) -> bytes:
        path = (self._root / file_path).resolve()
        if not path.is_relative_to(self._root):
            raise DocumentNotFound(f"{file_path!r} is outside the document root")
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise DocumentNotFound(f"Cannot read {file_path!r}: {exc}") from exc
        logger.debug("Loaded document %s (%d bytes)", file_path, len(data))
        return data
