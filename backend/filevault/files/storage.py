"""Blob storage on the local filesystem, keyed by opaque generated path ids."""

import logging
import os
import re
import uuid
from pathlib import Path

from filevault.errors import NotFound, TransientStorageError

log = logging.getLogger(__name__)

# Path ids are generated here, never taken from user input; still refuse anything
# that could leave the base directory.
_SAFE_PATH_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def new_path_id() -> str:
    """Fresh, never-reused identifier for a blob."""
    return uuid.uuid4().hex


def variant_id(path_id: str, size: int) -> str:
    """Storage id of a resized variant: <path_id>_<size>."""
    return f"{path_id}_{size}"


class BlobStorage:
    """Raw bytes under base_path, one file per path id."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = Path(base_path)

    def ensure_root(self) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path_id: str) -> Path:
        if not path_id or not _SAFE_PATH_ID.match(path_id):
            raise ValueError(f"Unsafe blob id: {path_id!r}")
        return self.base_path / path_id

    def write(self, path_id: str, data: bytes) -> None:
        """Store data at path_id, replacing any previous content atomically."""
        target = self._resolve(path_id)
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as e:
            log.error("Blob write failed id=%s: %s", path_id, e)
            tmp.unlink(missing_ok=True)
            raise TransientStorageError() from e
        log.debug("Wrote blob id=%s size=%d", path_id, len(data))

    def write_variant(self, path_id: str, size: int, data: bytes) -> None:
        self.write(variant_id(path_id, size), data)

    def read(self, path_id: str) -> bytes:
        """Return stored bytes; NotFound if nothing is stored under path_id."""
        target = self._resolve(path_id)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(f"blob {path_id}") from e
        except IsADirectoryError as e:
            raise NotFound(f"blob {path_id}") from e

    def read_variant(self, path_id: str, size: int) -> bytes:
        return self.read(variant_id(path_id, size))

    def locate(self, path_id: str) -> Path:
        """On-disk path of a stored blob; NotFound if nothing is stored there."""
        target = self._resolve(path_id)
        if not target.is_file():
            raise NotFound(f"blob {path_id}")
        return target

    def exists(self, path_id: str) -> bool:
        return self._resolve(path_id).is_file()

    def discard(self, path_id: str) -> None:
        """Remove a blob if present (cleanup after a failed metadata write)."""
        try:
            self._resolve(path_id).unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not remove orphan blob id=%s: %s", path_id, e)
