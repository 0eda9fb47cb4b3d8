"""BlobStore: opaque byte payloads keyed by name.

One ``<root>/<domain>/<key>.dat`` file per key, written in a single attempt.
"""
import logging
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Optional

from .objects import validate_key
from .results import Result, Status
from .vault import crypto

if TYPE_CHECKING:  # pragma: no cover
    from .storage import Storage

logger = logging.getLogger("navigator.securestore")

EXTENSION = ".dat"


class BlobStore:
    """Saves and loads raw bytes for one Storage domain."""

    def __init__(self, storage: "Storage"):
        self._storage = storage

    def file_path(self, key: str) -> PurePosixPath:
        return PurePosixPath(self._storage.domain, f"{key}{EXTENSION}")

    def save(self, data: bytes, key: str) -> Result:
        """Encrypt (when enabled) and write ``data`` under ``key``."""
        validate_key(key)
        self._storage.ensure_open()
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Blob data must be bytes, got {type(data).__name__}")
        payload = bytes(data)
        if self._storage.config.encrypted:
            payload = crypto.encrypt(payload, self._storage.record_key(key))
        fs = self._storage.fs
        with fs.lock:
            try:
                fs.write_bytes(self.file_path(key), payload)
            except OSError as err:
                return self._storage.report(
                    Result(Status.IO_ERROR, key=key, error=err, attempts=1),
                    "save_blob",
                )
        return Result(Status.OK, key=key, value=key, attempts=1)

    def try_load(self, key: str) -> Result:
        validate_key(key)
        self._storage.ensure_open()
        fs = self._storage.fs
        path = self.file_path(key)
        with fs.lock:
            if not fs.exists(path):
                return Result(Status.NOT_FOUND, key=key)
            try:
                data = fs.read_bytes(path)
            except FileNotFoundError:
                return Result(Status.NOT_FOUND, key=key)
            except OSError as err:
                return self._storage.report(
                    Result(Status.IO_ERROR, key=key, error=err, attempts=1),
                    "load_blob",
                )
        if self._storage.config.encrypted:
            data = crypto.decrypt(data, self._storage.record_key(key))
            if data is None:
                return self._storage.report(
                    Result(Status.DECRYPT_MISMATCH, key=key, attempts=1),
                    "load_blob",
                )
        return Result(Status.OK, key=key, value=data, attempts=1)

    def load(self, key: str) -> Optional[bytes]:
        """Return the saved bytes, or None."""
        return self.try_load(key).unwrap()

    def delete(self, key: str) -> Result:
        validate_key(key)
        self._storage.ensure_open()
        fs = self._storage.fs
        with fs.lock:
            try:
                fs.delete(self.file_path(key))
            except OSError as err:
                return self._storage.report(
                    Result(Status.IO_ERROR, key=key, error=err, attempts=1),
                    "delete_blob",
                )
        return Result(Status.OK, key=key, attempts=1)
