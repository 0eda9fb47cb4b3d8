"""
Storage: composition root of Navigator SecureStore.

Provides the public API:
- ``object_store``: typed objects, one encrypted file per (type, key)
- ``blob_store``: opaque byte payloads keyed by name
- ``values``: typed get/set of primitives
- ``destroy()``: wipe every record of the domain
- ``close()``: release the domain and stop background saves

Construction probes the secure key/value backend, falls back to the
internal backend when the caller-supplied one misbehaves, and resolves the
device-bound master secret.

Security Note:
    Never log the master secret or record keys. Only log domain hashes,
    slot names and record keys.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from .blobs import BlobStore
from .exceptions import ConfigurationError
from .filesystem import LocalFileSystem
from .objects import ObjectStore
from .registry import DomainRegistry, default_registry
from .results import ErrorHook, Result, Status
from .values import Values
from .vault.backends import (
    CallableBackend,
    InternalBackend,
    SecureGetter,
    SecureKeyValueBackend,
    SecureSetter,
)
from .vault.config import StorageConfig
from .vault.crypto import derive_record_key, domain_hash
from .vault.master_secret import probe_backend, resolve_master_secret

logger = logging.getLogger("navigator.securestore")


class Storage:
    """Encrypted object store for one logical domain.

    At most one live Storage per registry may hold a given domain. The
    master secret is resolved once here and is immutable afterwards.
    """

    def __init__(
        self,
        domain: str,
        get_secure_value: Optional[SecureGetter] = None,
        set_secure_value: Optional[SecureSetter] = None,
        encrypted: Optional[bool] = None,
        *,
        config: Optional[StorageConfig] = None,
        registry: Optional[DomainRegistry] = None,
        on_error: Optional[ErrorHook] = None,
    ):
        if not isinstance(domain, str) or not domain:
            raise ConfigurationError("Storage domain must be a non-empty string")
        if (get_secure_value is None) != (set_secure_value is None):
            raise ConfigurationError(
                "get_secure_value and set_secure_value must be supplied together"
            )
        config = config or StorageConfig.from_env()
        if encrypted is not None:
            config = config.model_copy(update={"encrypted": encrypted})
        self.config = config
        self.name = domain
        self.domain = domain_hash(domain)
        self._on_error = on_error
        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False
        self._registry = registry if registry is not None else default_registry
        self._registry.acquire(self.domain, domain)
        try:
            self.fs = LocalFileSystem(config.root)
            self.backend = self._select_backend(get_secure_value, set_secure_value)
            self._secret = resolve_master_secret(
                self.backend, config.machine_name, config.user_name
            )
        except BaseException:
            self._registry.release(self.domain)
            self._closed = True
            raise
        self.object_store = ObjectStore(self)
        self.blob_store = BlobStore(self)
        self.values = Values(self.object_store)
        logger.debug(
            "Storage ready: domain=%s encrypted=%s backend=%s",
            self.domain, config.encrypted, type(self.backend).__name__,
        )

    def __repr__(self) -> str:
        return (
            f"<Storage domain={self.domain} encrypted={self.config.encrypted} "
            f"hardware_backed={self.hardware_backed}>"
        )

    # ------------------------------------------------------------------
    # Backend selection
    # ------------------------------------------------------------------

    def _internal_backend(self) -> InternalBackend:
        return InternalBackend(
            self.domain, self.fs, self.config.machine_name, self.config.user_name
        )

    def _select_backend(
        self,
        getter: Optional[SecureGetter],
        setter: Optional[SecureSetter],
    ) -> SecureKeyValueBackend:
        """Pick the caller backend when it passes the probe, else the internal one."""
        if getter is not None and setter is not None:
            backend = CallableBackend(self.domain, getter, setter)
            if probe_backend(backend):
                self.secure_key_value_capability = True
                return backend
            self.secure_key_value_capability = False
            self.report(
                Result(Status.CAPABILITY_FAILED, key=self.domain, attempts=1),
                "probe",
            )
            return self._internal_backend()
        backend = self._internal_backend()
        self.secure_key_value_capability = probe_backend(backend)
        return backend

    @property
    def hardware_backed(self) -> bool:
        return getattr(self.backend, "hardware_backed", False)

    # ------------------------------------------------------------------
    # Shared services for the stores
    # ------------------------------------------------------------------

    def record_key(self, key: str) -> bytes:
        """Derive the encryption key of record ``key``."""
        return derive_record_key(self._secret, key)

    def report(self, result: Result, operation: str) -> Result:
        """Log a faulty outcome and hand it to the diagnostic hook."""
        if result.is_fault:
            logger.warning(
                "%s %s in domain %s: %s after %d attempt(s)%s",
                operation, result.key, self.domain, result.status.value,
                result.attempts, f" ({result.error})" if result.error else "",
            )
            if self._on_error is not None:
                try:
                    self._on_error(result)
                except Exception:
                    logger.exception(
                        "Diagnostic hook failed for %s %s", operation, result.key
                    )
        return result

    def ensure_open(self) -> None:
        """Raise ConfigurationError once the Storage has been closed."""
        if self._closed:
            raise ConfigurationError(f"Storage {self.domain} is closed")

    @property
    def executor(self) -> ThreadPoolExecutor:
        self.ensure_open()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.background_workers,
                thread_name_prefix=f"securestore-{self.domain}",
            )
        return self._executor

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def destroy(self) -> Result:
        """Delete every file and folder of this domain.

        The master secret stays in the backend for the next construction.
        """
        self.ensure_open()
        with self.fs.lock:
            try:
                self.fs.remove_tree(self.domain)
            except OSError as err:
                return self.report(
                    Result(Status.IO_ERROR, key=self.domain, error=err, attempts=1),
                    "destroy",
                )
        logger.info("Domain %s wiped", self.domain)
        return Result(Status.OK, key=self.domain, attempts=1)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Wait for background saves, then release the domain."""
        if self._closed:
            return
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._registry.release(self.domain)

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
