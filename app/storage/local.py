"""
Filesystem blob store: one file per key under storage_base_path.
"""
import logging
import os
from typing import BinaryIO, Iterator

from app.core.config import settings
from app.storage.base import BlobNotFoundError, Storage

logger = logging.getLogger(__name__)


class LocalStorage(Storage):
    def __init__(self, base_path: str | None = None, chunk_size: int | None = None) -> None:
        self.base_path = os.path.abspath(base_path or settings.storage_base_path)
        self.chunk_size = chunk_size or settings.storage_chunk_size

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_path, key))
        # Keys are flat object names; anything resolving outside the root is absent.
        if os.path.dirname(path) != self.base_path:
            raise BlobNotFoundError(key)
        return path

    def open_stream(self, key: str) -> Iterator[bytes]:
        path = self._path(key)
        try:
            fh = open(path, "rb")
        except (FileNotFoundError, IsADirectoryError):
            raise BlobNotFoundError(key) from None
        return _iter_chunks(fh, self.chunk_size)

    def check(self) -> None:
        if not os.path.isdir(self.base_path):
            raise FileNotFoundError(f"storage root missing: {self.base_path}")
        if not os.access(self.base_path, os.R_OK):
            raise PermissionError(f"storage root not readable: {self.base_path}")

    def save(self, key: str, content: bytes) -> str:
        path = self._path(key)
        os.makedirs(self.base_path, exist_ok=True)
        with open(path, "wb") as f:
            f.write(content)
        logger.info("blob_saved", extra={"key": key, "count": len(content)})
        return key


def _iter_chunks(fh: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    with fh:
        while chunk := fh.read(chunk_size):
            yield chunk
