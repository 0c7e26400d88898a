"""File storage for uploaded documents: put / get / delete / delete_prefix.

Keys are POSIX-style relative paths (``{case_id}/{timestamp}-{name}``)
resolved under ``UPLOAD_DIR``; a key that would escape the root is
rejected with ``ValueError``.
"""

import logging
import shutil
from pathlib import Path, PurePosixPath

from app.config import UPLOAD_DIR

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, root: Path = UPLOAD_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        rel = PurePosixPath(key)
        if not key or rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Invalid storage key: {key!r}")
        path = (self.root / Path(*rel.parts)).resolve()
        if self.root != path and self.root not in path.parents:
            raise ValueError(f"Invalid storage key: {key!r}")
        return path

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        path = self._resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"Stored {key} ({len(data):,} bytes, {content_type})")

    def get(self, key: str) -> bytes:
        path = self._resolve(key)
        if not path.is_file():
            raise FileNotFoundError(key)
        return path.read_bytes()

    def delete(self, key: str):
        self._resolve(key).unlink(missing_ok=True)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under ``prefix``; returns the number removed."""
        path = self._resolve(prefix.rstrip("/"))
        if path == self.root:
            raise ValueError("Refusing to delete the storage root")
        if path.is_file():
            path.unlink()
            return 1
        if not path.is_dir():
            return 0
        count = sum(1 for p in path.rglob("*") if p.is_file())
        shutil.rmtree(path)
        logger.info(f"Deleted {count} object(s) under {prefix}")
        return count
