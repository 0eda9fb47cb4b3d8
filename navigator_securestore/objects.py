"""
ObjectStore: typed objects saved as one encrypted file per key.

Layout::

    <root>/<domain>/<type folder>/<record key>.cry   (encrypted)
    <root>/<domain>/<type folder>/<record key>.json  (unencrypted)

Every operation runs under the coarse lock of the storage root. Saves,
loads and deletes retry transient I/O failures a fixed number of times
with a fixed delay, then give up with a ``Result`` instead of raising.
"""
import re
import time
import logging
from pathlib import PurePosixPath
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

from . import codec
from .exceptions import (
    ConfigurationError,
    FolderNameTooLongError,
    InvalidKeyError,
    SerializationError,
)
from .results import Result, Status
from .vault import crypto

if TYPE_CHECKING:  # pragma: no cover
    from .storage import Storage

logger = logging.getLogger("navigator.securestore")

FORBIDDEN_CHARS = "*?/\\|<>'\""
FILLER = "-"
MAX_NAME_LENGTH = 255
DEFAULT_KEY = "_default"
ENCRYPTED_EXTENSION = ".cry"
PLAIN_EXTENSION = ".json"

_VERSION_TOKEN = re.compile(r"Version=|(^|[._])v?\d+[._]\d+")
_UNREADABLE = object()


def is_forbidden(char: str) -> bool:
    """Filesystem-hostile characters, including control characters such as NUL."""
    return char in FORBIDDEN_CHARS or ord(char) < 32 or ord(char) == 127


@runtime_checkable
class Identifiable(Protocol):
    """Objects that pick their own record key."""

    def storage_key(self) -> str:
        ...


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------

def validate_key(key: Optional[str]) -> str:
    """Validate a record key.

    Raises:
        InvalidKeyError: If key is not a non-empty string free of forbidden characters.
    """
    if not isinstance(key, str) or not key:
        raise InvalidKeyError("Record key must be a non-empty string")
    bad = sorted({c for c in key if is_forbidden(c)})
    if bad:
        raise InvalidKeyError(
            f"Invalid character(s) {''.join(bad)!r} in the key {key!r}"
        )
    return key


def resolve_key(obj: Any, key: Optional[str] = None) -> str:
    """Return the record key for ``obj``: explicit, self-declared, or default."""
    if key is None:
        if isinstance(obj, Identifiable):
            key = obj.storage_key()
        if key is None:
            key = DEFAULT_KEY
    return validate_key(key)


def type_identifier(cls: type) -> str:
    """Stable identifier of ``cls`` across library upgrades.

    The fully qualified name is used unless it embeds a version token, in
    which case versioned module segments are dropped and the simple name is
    joined with ``+``.
    """
    module = getattr(cls, "__module__", None) or ""
    qualified = f"{module}.{cls.__qualname__}" if module else cls.__qualname__
    if not _VERSION_TOKEN.search(qualified):
        return qualified
    namespace = ".".join(
        part for part in module.split(".") if not _VERSION_TOKEN.search(f".{part}")
    )
    name = cls.__name__.split("[", 1)[0]
    return f"{namespace}+{name}" if namespace else name


def sanitize_name(text: str) -> str:
    """Replace forbidden characters with the filler.

    Raises:
        FolderNameTooLongError: If the result exceeds the filesystem limit.
    """
    cleaned = "".join(FILLER if is_forbidden(c) else c for c in text)
    if len(cleaned) > MAX_NAME_LENGTH:
        raise FolderNameTooLongError(
            f"File name too long ({len(cleaned)} > {MAX_NAME_LENGTH}): {cleaned[:40]}..."
        )
    return cleaned


def folder_name(cls: type) -> str:
    if cls is None:
        raise ConfigurationError("Type is None")
    return sanitize_name(type_identifier(cls))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ObjectStore:
    """Saves and loads typed objects for one Storage domain."""

    def __init__(self, storage: "Storage"):
        self._storage = storage

    def __repr__(self) -> str:
        return f"<ObjectStore domain={self._storage.domain}>"

    @property
    def extension(self) -> str:
        return ENCRYPTED_EXTENSION if self._storage.config.encrypted else PLAIN_EXTENSION

    def folder(self, cls: type) -> PurePosixPath:
        return PurePosixPath(self._storage.domain, folder_name(cls))

    def file_path(self, cls: type, key: str) -> PurePosixPath:
        return self.folder(cls) / f"{key}{self.extension}"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _retry(
        self,
        operation: str,
        key: str,
        action: Callable[[], Any],
        retry_on: tuple = (OSError,),
    ) -> Result:
        """Run ``action`` until it succeeds or the attempt bound is reached."""
        config = self._storage.config
        last_error: Optional[BaseException] = None
        for attempt in range(1, config.attempts + 1):
            try:
                value = action()
                return Result(Status.OK, key=key, value=value, attempts=attempt)
            except retry_on as err:
                last_error = err
                logger.debug(
                    "%s %s: attempt %d/%d failed: %s",
                    operation, key, attempt, config.attempts, err,
                )
                if attempt < config.attempts:
                    time.sleep(config.retry_delay)
        status = (
            Status.DESERIALIZE_FAILED
            if isinstance(last_error, SerializationError)
            else Status.RETRY_EXHAUSTED
        )
        return self._storage.report(
            Result(status, key=key, error=last_error, attempts=config.attempts),
            operation,
        )

    def _write(self, obj: Any, key: str) -> Result:
        fs = self._storage.fs
        folder = self.folder(type(obj))
        path = self.file_path(type(obj), key)

        def write() -> str:
            fs.makedirs(folder)
            payload = codec.dumps(obj)
            if self._storage.config.encrypted:
                payload = crypto.encrypt(payload, self._storage.record_key(key))
            fs.write_bytes(path, payload)
            return key

        with fs.lock:
            return self._retry("save", key, write, (OSError, SerializationError))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def try_save(self, obj: Any, key: Optional[str] = None) -> Result:
        """Serialize, encrypt and write ``obj``.

        Args:
            obj: Object to save; its runtime type selects the folder.
            key: Record key; defaults to ``obj.storage_key()`` for
                Identifiable objects, else ``DEFAULT_KEY``.

        Returns:
            Result whose value is the key used.

        Raises:
            ConfigurationError: If obj is None or the key is invalid.
        """
        self._storage.ensure_open()
        if obj is None:
            raise ConfigurationError("Cannot save None")
        key = resolve_key(obj, key)
        folder_name(type(obj))
        return self._write(obj, key)

    def save(self, obj: Any, key: Optional[str] = None) -> str:
        """Save ``obj`` and return the key used, even if all attempts failed."""
        result = self.try_save(obj, key)
        return result.key

    def save_async(self, obj: Any, key: Optional[str] = None) -> "Future[Result]":
        """Save ``obj`` on the background executor.

        Validation happens immediately; the returned future resolves to the
        save Result. Callers that do not need the outcome may drop it.
        """
        self._storage.ensure_open()
        if obj is None:
            raise ConfigurationError("Cannot save None")
        key = resolve_key(obj, key)
        folder_name(type(obj))
        return self._storage.executor.submit(self._write, obj, key)

    def try_load(self, cls: type, key: str = DEFAULT_KEY) -> Result:
        """Read, decrypt and deserialize the record ``key`` of type ``cls``.

        A record that does not decrypt under this Storage's secret was written
        under another device/account secret; it is deleted and reported as
        ``DECRYPT_MISMATCH``; so is a payload that decrypts to something other
        than a JSON document. Codec failures are retried and then reported as
        ``DESERIALIZE_FAILED`` with the file left in place.
        """
        validate_key(key)
        self._storage.ensure_open()
        fs = self._storage.fs
        path = self.file_path(cls, key)
        encrypted = self._storage.config.encrypted
        with fs.lock:
            if not fs.exists(path):
                return Result(Status.NOT_FOUND, key=key)
            mismatch: list[Result] = []

            def read() -> Any:
                data = fs.read_bytes(path)
                if encrypted:
                    data = crypto.decrypt(data, self._storage.record_key(key))
                    document = self._document(data)
                    if document is _UNREADABLE:
                        mismatch.append(self._discard(path, key))
                        return None
                    return codec.restore(document, cls)
                return codec.loads(data, cls)

            result = self._retry("load", key, read, (OSError, SerializationError))
            if mismatch:
                return mismatch[0]
            if result.status is Status.RETRY_EXHAUSTED and not fs.exists(path):
                return Result(Status.NOT_FOUND, key=key)
            return result

    @staticmethod
    def _document(plaintext: Optional[bytes]) -> Any:
        """Parse decrypted bytes; ``_UNREADABLE`` when they are not a JSON document.

        A wrong key passes CBC unpadding now and then and yields random
        bytes, which never parse as JSON.
        """
        if plaintext is None:
            return _UNREADABLE
        try:
            return codec.parse(plaintext)
        except SerializationError:
            return _UNREADABLE

    def _discard(self, path: PurePosixPath, key: str) -> Result:
        """Delete a record that does not decrypt with the current secret."""
        try:
            self._storage.fs.delete(path)
            error = None
        except OSError as err:
            error = err
        return self._storage.report(
            Result(Status.DECRYPT_MISMATCH, key=key, error=error, attempts=1),
            "load",
        )

    def load(
        self,
        cls: type,
        key: str = DEFAULT_KEY,
        create_if_missing: bool = False,
    ) -> Any:
        """Return the saved object, a new ``cls()`` or None.

        Args:
            cls: Type the object was saved as.
            key: Record key.
            create_if_missing: Instantiate ``cls`` when nothing is loaded.
        """
        if cls is None:
            raise ConfigurationError("Type is None")
        result = self.try_load(cls, key)
        if result.ok:
            return result.value
        return cls() if create_if_missing else None

    def list_keys(self, cls: type) -> list[str]:
        """Keys of every saved object of type ``cls``, sorted."""
        self._storage.ensure_open()
        return self._storage.fs.list_files(self.folder(cls), self.extension)

    def list_all(self, cls: type) -> list[Any]:
        """Every loadable object of type ``cls``, in key order."""
        objects = []
        for key in self.list_keys(cls):
            obj = self.load(cls, key)
            if obj is not None:
                objects.append(obj)
        return objects

    def delete(self, cls: type, key: str) -> Result:
        """Delete one saved object; deleting a missing key is OK."""
        validate_key(key)
        self._storage.ensure_open()
        fs = self._storage.fs
        path = self.file_path(cls, key)
        with fs.lock:
            return self._retry("delete", key, lambda: fs.delete(path))

    def delete_all(self, cls: type) -> Result:
        """Delete every saved object of type ``cls``; value is the count deleted."""
        self._storage.ensure_open()
        fs = self._storage.fs
        folder = self.folder(cls)

        def delete_files() -> int:
            deleted = 0
            for key in fs.list_files(folder, self.extension):
                if fs.delete(folder / f"{key}{self.extension}"):
                    deleted += 1
            return deleted

        with fs.lock:
            return self._retry("delete_all", folder.name, delete_files)
