"""Local filesystem blob store for ticket attachments."""
from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    pass


class LocalBlobStore:
    """Stores objects under ``root`` and serves them from ``public_base_url``."""

    def __init__(self, *, root: str, public_base_url: str):
        self._root = Path(root).resolve()
        self._public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise BlobStoreError(f"Invalid object path: {path}")
        return self._root.joinpath(*relative.parts)

    def upload(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise BlobStoreError(f"Upload failed for {path}: {e}") from e
        return self.public_url(path)

    def remove(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.info("Blob already absent: %s", path)
        except OSError as e:
            raise BlobStoreError(f"Remove failed for {path}: {e}") from e

    def list(self, prefix: str) -> list[str]:
        """Names of the objects directly under ``prefix``."""
        directory = self._resolve(prefix) if prefix else self._root
        if not directory.is_dir():
            return []
        return sorted(entry.name for entry in directory.iterdir() if entry.is_file())

    def open(self, path: str) -> Path:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobStoreError(f"Object not found: {path}")
        return target

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/api/v1/files/serve/{path}"

    def path_from_url(self, url: str | None) -> str | None:
        """Reverse of public_url; None for URLs this store did not issue."""
        prefix = f"{self._public_base_url}/api/v1/files/serve/"
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):]
