"""
Vault Crypto Core: Key derivation and the record envelope.

Every stored record is wrapped as:
    [IV 16B][AES-256-CBC / PKCS7 ciphertext]

with a per-record key SHA256(master_secret | record_key). Decryption falls
back once to the legacy ECIES scheme (see ``ecies.py``) so records written
by the older public-key format stay readable; new writes always use AES.

Security Note:
    Never log plaintext, ciphertext or key values.
    IVs are random 128-bit and never reused.
"""
import os
import hashlib
import logging
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from . import ecies

logger = logging.getLogger("navigator.securestore")

IV_SIZE = 16
BLOCK_SIZE = 16
KEY_LENGTH = 32  # AES-256

_BLOCK_BITS = BLOCK_SIZE * 8


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def domain_hash(name: str) -> str:
    """Return the stable short identifier of a domain name.

    The first 8 bytes of SHA256 over the UTF-16-LE name, read as a
    little-endian unsigned integer and formatted as lowercase hex.
    """
    digest = sha256(name.encode("utf-16-le"))
    return format(int.from_bytes(digest[:8], "little"), "x")


def derive_record_key(secret: bytes, record_key: str) -> bytes:
    """Derive the 32-byte encryption key of one record.

    Args:
        secret: Master secret of the owning Storage.
        record_key: Caller-chosen key the record is saved under.

    Returns:
        SHA256(secret | UTF-8 record_key).
    """
    return sha256(secret + record_key.encode("utf-8"))


# ---------------------------------------------------------------------------
# Record envelope
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt plaintext with a fresh random IV.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte AES-256 key.

    Returns:
        IV followed by the CBC ciphertext.

    Raises:
        ValueError: If the key is not 32 bytes.
    """
    if len(key) != KEY_LENGTH:
        raise ValueError(
            f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}"
        )
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(_BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return iv + encryptor.update(padded) + encryptor.finalize()


def _decrypt_envelope(envelope: bytes, key: bytes) -> bytes:
    _min = IV_SIZE + BLOCK_SIZE
    if len(envelope) < _min or (len(envelope) - IV_SIZE) % BLOCK_SIZE:
        raise ValueError(
            f"envelope malformed: {len(envelope)} bytes (minimum {_min}, "
            "block aligned)"
        )
    iv = envelope[:IV_SIZE]
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(envelope[IV_SIZE:]) + decryptor.finalize()
    unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def decrypt(envelope: bytes, key: bytes) -> Optional[bytes]:
    """Decrypt an envelope produced by ``encrypt``.

    On failure, retries once treating ``key`` as a legacy raw private key and
    the whole envelope as an ECIES blob.

    Returns:
        Plaintext bytes, or None when neither scheme yields plaintext.
    """
    try:
        return _decrypt_envelope(envelope, key)
    except ValueError as err:
        logger.debug("AES envelope rejected (%s), trying legacy scheme", err)
    try:
        return ecies.decrypt_with_secret(envelope, key)
    except ValueError as err:
        logger.debug("Legacy scheme rejected envelope: %s", err)
    return None
