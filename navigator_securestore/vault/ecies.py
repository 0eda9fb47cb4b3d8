"""
Asymmetric envelope over SECP256K1 (ECIES, "BIE1" framing).

Used in two places:
- the internal secure key/value backend, which protects the master secret
  with a keypair derived from device and user identifiers;
- the legacy fallback of ``crypto.decrypt``, for records written by the
  older public-key scheme.

Blob format:
    b"BIE1" | ephemeral public key (33B, compressed) | AES-128-CBC ct | HMAC-SHA256 (32B)

SHA-512 over the ECDH shared secret yields IV (16B) | enc key (16B) | mac key (32B).
"""
import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

MAGIC = b"BIE1"
CURVE = ec.SECP256K1()
PUBLIC_KEY_SIZE = 33
MAC_SIZE = 32
_BLOCK_BITS = 128
_MIN_SIZE = len(MAGIC) + PUBLIC_KEY_SIZE + 16 + MAC_SIZE


def private_key_from_secret(secret: bytes) -> ec.EllipticCurvePrivateKey:
    """Map raw secret bytes to a SECP256K1 private key.

    Raises:
        ValueError: If the secret is empty or its scalar is outside the curve order.
    """
    if not secret:
        raise ValueError("Empty private key material")
    return ec.derive_private_key(int.from_bytes(secret, "big"), CURVE)


def _shared_keys(shared: bytes) -> tuple[bytes, bytes, bytes]:
    digest = hashlib.sha512(shared).digest()
    return digest[:16], digest[16:32], digest[32:]


def _mac(key: bytes, data: bytes) -> hmac.HMAC:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    return h


def encrypt(public_key: ec.EllipticCurvePublicKey, plaintext: bytes) -> bytes:
    """Encrypt ``plaintext`` so only the holder of the private key can read it."""
    ephemeral = ec.generate_private_key(CURVE)
    iv, key_e, key_m = _shared_keys(ephemeral.exchange(ec.ECDH(), public_key))
    padder = padding.PKCS7(_BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key_e), modes.CBC(iv)).encryptor()
    ct = encryptor.update(padded) + encryptor.finalize()
    epk = ephemeral.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    )
    body = MAGIC + epk + ct
    return body + _mac(key_m, body).finalize()


def decrypt(private_key: ec.EllipticCurvePrivateKey, blob: bytes) -> bytes:
    """Decrypt a blob produced by ``encrypt``.

    Raises:
        ValueError: On bad framing, wrong key, tampering or bad padding.
    """
    if len(blob) < _MIN_SIZE or not blob.startswith(MAGIC):
        raise ValueError("Not an ECIES blob")
    start = len(MAGIC)
    epk = blob[start:start + PUBLIC_KEY_SIZE]
    body, tag = blob[:-MAC_SIZE], blob[-MAC_SIZE:]
    ct = body[start + PUBLIC_KEY_SIZE:]
    if len(ct) % 16:
        raise ValueError("ECIES ciphertext is not block aligned")
    ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(CURVE, epk)
    iv, key_e, key_m = _shared_keys(private_key.exchange(ec.ECDH(), ephemeral))
    try:
        _mac(key_m, body).verify(tag)
    except InvalidSignature as err:
        raise ValueError("ECIES authentication failed") from err
    decryptor = Cipher(algorithms.AES(key_e), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ct) + decryptor.finalize()
    unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def decrypt_with_secret(blob: bytes, secret: bytes) -> bytes:
    """Decrypt ``blob`` treating ``secret`` as the raw private scalar."""
    return decrypt(private_key_from_secret(secret), blob)


def random_secret() -> bytes:
    """Return a fresh private scalar, mostly useful to tests and tooling."""
    return ec.generate_private_key(CURVE).private_numbers().private_value.to_bytes(
        32, "big"
    )


__all__ = [
    "encrypt",
    "decrypt",
    "decrypt_with_secret",
    "private_key_from_secret",
    "random_secret",
]
