"""Navigator SecureStore.

On-device encrypted persistence for configuration values and objects,
keyed by a device-and-domain-bound master secret.
"""
from .version import __version__
from .storage import Storage
from .registry import DomainRegistry, default_registry
from .objects import ObjectStore, Identifiable, DEFAULT_KEY
from .blobs import BlobStore
from .values import Values
from .results import Result, Status
from .exceptions import (
    StorageError,
    ConfigurationError,
    DomainInUseError,
    InvalidKeyError,
    FolderNameTooLongError,
    SerializationError,
    MasterSecretError,
)
from .vault.config import StorageConfig

__all__ = [
    "__version__",
    "Storage",
    "StorageConfig",
    "DomainRegistry",
    "default_registry",
    "ObjectStore",
    "Identifiable",
    "DEFAULT_KEY",
    "BlobStore",
    "Values",
    "Result",
    "Status",
    "StorageError",
    "ConfigurationError",
    "DomainInUseError",
    "InvalidKeyError",
    "FolderNameTooLongError",
    "SerializationError",
    "MasterSecretError",
]
