from abc import ABC, abstractmethod
from typing import Iterator


class BlobNotFoundError(Exception):
    """The store has no object under the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Blob not found: {key}")
        self.key = key


class Storage(ABC):
    @abstractmethod
    def open_stream(self, key: str) -> Iterator[bytes]:
        """Open the object and return an iterator over its bytes.

        Raises BlobNotFoundError before any byte is produced if the key is absent.
        """
        raise NotImplementedError

    @abstractmethod
    def save(self, key: str, content: bytes) -> str:
        """Store content under key; returns the key."""
        raise NotImplementedError

    @abstractmethod
    def check(self) -> None:
        """Raise OSError if the store cannot serve reads."""
        raise NotImplementedError
