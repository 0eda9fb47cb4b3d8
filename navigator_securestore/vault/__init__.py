"""Vault: key material for Navigator SecureStore.

Security Note (Threat Model):
    The master secret and derived record keys live in process memory for the
    lifetime of a Storage. A memory dump of the application process exposes
    them. Protection against kernel-level access to process memory is out of
    scope.
"""

from .config import StorageConfig
from .crypto import encrypt, decrypt, derive_record_key, domain_hash
from .backends import (
    SecureKeyValueBackend,
    CallableBackend,
    InternalBackend,
)
from .master_secret import probe_backend, resolve_master_secret

__all__ = [
    "StorageConfig",
    "encrypt",
    "decrypt",
    "derive_record_key",
    "domain_hash",
    "SecureKeyValueBackend",
    "CallableBackend",
    "InternalBackend",
    "probe_backend",
    "resolve_master_secret",
]
