"""
Filesystem blob storage.

Blobs are addressed by opaque storage locations (hex UUIDs) that are never
derived from the uploaded filename or the public file id.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from uuid import uuid4

from .errors import StorageIOError, ValidationError
from .utils import ensure_directory

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, root: Path) -> None:
        self.root = ensure_directory(Path(root).resolve())

    def path_for(self, location: str) -> Path:
        if not location or "/" in location or "\\" in location or location in {".", ".."}:
            raise ValidationError(f"Invalid storage location: {location!r}")
        return self.root / location

    def _new_location(self) -> str:
        return uuid4().hex

    def save_bytes(self, data: bytes) -> str:
        location = self._new_location()
        try:
            self.path_for(location).write_bytes(data)
        except OSError as exc:
            raise StorageIOError(f"Failed to write blob {location}: {exc}") from exc
        return location

    def save_path(self, source: Path) -> str:
        """Copy an existing file into storage and return its new location."""
        location = self._new_location()
        try:
            shutil.copyfile(source, self.path_for(location))
        except OSError as exc:
            raise StorageIOError(f"Failed to ingest {source}: {exc}") from exc
        return location

    def read(self, location: str) -> bytes:
        path = self.path_for(location)
        if not path.is_file():
            raise FileNotFoundError(f"Blob not found: {location}")
        return path.read_bytes()

    def exists(self, location: str) -> bool:
        return self.path_for(location).is_file()

    def size(self, location: str) -> int:
        return self.path_for(location).stat().st_size

    def delete(self, location: str) -> bool:
        path = self.path_for(location)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Blob {location} already absent; nothing to delete")
            return False
        return True
