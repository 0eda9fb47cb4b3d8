"""
Secure key/value backends: storage for the master secret.

Two implementations:
- ``CallableBackend`` delegates to a caller-supplied getter/setter pair,
  typically wired to hardware-backed storage (keychain, keystore, TPM).
- ``InternalBackend`` protects values with a SECP256K1 keypair derived from
  the domain, machine and user identifiers and writes them as flat files.

Security Note:
    The internal keypair is derivable by anyone who knows the same
    identifiers. It guards against casual plaintext exposure only; it is
    the degraded path when no hardware-backed storage is available.
"""
import hashlib
import logging
from typing import Callable, Optional, Protocol, runtime_checkable

from ..filesystem import LocalFileSystem
from . import ecies
from .crypto import sha256

logger = logging.getLogger("navigator.securestore")

SecureGetter = Callable[[str], Optional[str]]
SecureSetter = Callable[[str, Optional[str]], None]


@runtime_checkable
class SecureKeyValueBackend(Protocol):
    """Storage for exactly the secrets a Storage needs."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: Optional[str]) -> None:
        """Store ``value`` under ``key``; None deletes the slot."""
        ...


class CallableBackend:
    """Backend built from a caller-supplied getter and setter."""

    hardware_backed = True

    def __init__(self, domain: str, getter: SecureGetter, setter: SecureSetter):
        self._domain = domain
        self._getter = getter
        self._setter = setter

    def slot(self, key: str) -> str:
        return f"{self._domain}.{key}"

    def get(self, key: str) -> Optional[str]:
        return self._getter(self.slot(key))

    def set(self, key: str, value: Optional[str]) -> None:
        self._setter(self.slot(key), value)


class InternalBackend:
    """Fallback backend encrypting values with a derived keypair."""

    hardware_backed = False

    def __init__(
        self,
        domain: str,
        fs: LocalFileSystem,
        machine_name: str,
        user_name: str,
    ):
        self._domain = domain
        self._fs = fs
        seed = sha256((domain + machine_name + user_name).encode("utf-16-le"))
        self._private_key = ecies.private_key_from_secret(seed)
        self._public_key = self._private_key.public_key()

    def slot(self, key: str) -> str:
        return f"{self._domain}.{key}"

    def filename(self, key: str) -> str:
        """File name (at the storage root) holding slot ``key``."""
        material = (self.slot(key) + self._domain).encode("utf-8")
        return hashlib.sha256(material).hexdigest().upper()

    def get(self, key: str) -> Optional[str]:
        name = self.filename(key)
        if not self._fs.exists(name):
            return None
        blob = self._fs.read_bytes(name)
        try:
            return ecies.decrypt(self._private_key, blob).decode("utf-16-le")
        except (ValueError, UnicodeDecodeError) as err:
            # Written under other identifiers; the slot reads as empty.
            logger.warning(
                "Cannot recover internal secure value for slot %s: %s",
                self.slot(key), err,
            )
            return None

    def set(self, key: str, value: Optional[str]) -> None:
        name = self.filename(key)
        if value is None:
            self._fs.delete(name)
            return
        self._fs.write_bytes(
            name, ecies.encrypt(self._public_key, value.encode("utf-16-le"))
        )
