"""Exception hierarchy for Navigator SecureStore.

Only configuration problems are raised to callers. Transient I/O, decrypt
mismatches and codec failures are reported through ``Result`` values.
"""


class StorageError(Exception):
    """Base class for every SecureStore error."""


class ConfigurationError(StorageError, ValueError):
    """Invalid construction argument or call argument."""


class DomainInUseError(ConfigurationError):
    """A live Storage already holds this domain."""


class InvalidKeyError(ConfigurationError):
    """Record key is empty or contains a forbidden character."""


class FolderNameTooLongError(ConfigurationError):
    """Sanitized type folder name exceeds the filesystem limit."""


class SerializationError(StorageError):
    """The codec could not flatten or restore an object."""


class MasterSecretError(StorageError):
    """The secure backend holds a master secret that cannot be decoded."""
