"""
Master secret lifecycle: capability probe and secret resolution.

The master secret is created once per domain and machine, persisted only
through a SecureKeyValueBackend, and read back unchanged on every later
construction. Per-record keys are derived from it and never stored.
"""
import hashlib
import logging
import secrets

from ..exceptions import MasterSecretError
from .backends import SecureKeyValueBackend
from .crypto import KEY_LENGTH, sha256

logger = logging.getLogger("navigator.securestore")

PROBE_KEY = "test"
PROBE_VALUE = "test"
SLOT_HASH_BYTES = 8


def probe_backend(backend: SecureKeyValueBackend) -> bool:
    """Round-trip a known value through ``backend``.

    Returns:
        True when the value reads back unchanged and the slot is cleared.
    """
    try:
        backend.set(PROBE_KEY, PROBE_VALUE)
        if backend.get(PROBE_KEY) != PROBE_VALUE:
            logger.warning(
                "Secure key/value backend %s failed the read-back probe",
                type(backend).__name__,
            )
            return False
        backend.set(PROBE_KEY, None)
        return True
    except Exception as err:  # caller-supplied functions may raise anything
        logger.warning(
            "Secure key/value backend %s raised during probe: %s",
            type(backend).__name__, err,
        )
        return False


def master_slot_name(machine_name: str) -> str:
    """Slot holding the master secret for this machine."""
    digest = sha256(machine_name.encode("utf-8"))
    return digest[:SLOT_HASH_BYTES].hex().upper()


def generate_master_secret(machine_name: str, user_name: str) -> str:
    """Return a fresh master secret as upper-case hex.

    Random bytes are salted with the device and user identifiers and hashed.
    """
    seed = secrets.token_bytes(KEY_LENGTH).hex().upper()
    material = (seed + machine_name + user_name).encode("utf-8")
    return hashlib.sha256(material).hexdigest().upper()


def resolve_master_secret(
    backend: SecureKeyValueBackend,
    machine_name: str,
    user_name: str,
) -> bytes:
    """Read the master secret from ``backend``, creating it on first use.

    Raises:
        MasterSecretError: If the stored value is not 32 bytes of hex.
    """
    slot = master_slot_name(machine_name)
    stored = backend.get(slot)
    if not stored:
        stored = generate_master_secret(machine_name, user_name)
        backend.set(slot, stored)
        logger.info("Generated new master secret in slot %s", slot)
    try:
        secret = bytes.fromhex(stored)
    except ValueError as err:
        raise MasterSecretError(
            f"Master secret slot {slot} does not hold hex data"
        ) from err
    if len(secret) != KEY_LENGTH:
        raise MasterSecretError(
            f"Master secret slot {slot} holds {len(secret)} bytes, "
            f"expected {KEY_LENGTH}"
        )
    return secret
