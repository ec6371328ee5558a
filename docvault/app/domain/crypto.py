"""Document crypto engine: key derivation, AEAD sealing and content hashing."""
from __future__ import annotations

import base64
import binascii
import hashlib
import secrets
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import DecryptionFailed, FormatError

KEY_LEN = 32
NONCE_LEN = 12
CIPHER_VERSION = b"\x01"
DEFAULT_SALT = b"docvault/passkey/v1"
DEFAULT_ITERATIONS = 200_000

Data = Union[str, bytes]


def _as_bytes(data: Data) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def _b64e(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64d(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def derive_key(
    passkey: str,
    salt: Optional[Data] = None,
    iterations: int = DEFAULT_ITERATIONS,
) -> bytes:
    """Stretch a passkey into a 256-bit key. Same passkey, same key."""
    if not passkey:
        raise FormatError("passkey must not be empty")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN,
        salt=_as_bytes(salt) if salt is not None else DEFAULT_SALT,
        iterations=iterations,
    )
    return kdf.derive(passkey.encode("utf-8"))


def encrypt(plaintext: Data, key: bytes) -> str:
    """Seal plaintext with AES-256-GCM under a fresh nonce.

    The result is URL-safe base64 of ``version || nonce || ciphertext+tag``.
    """
    if len(key) != KEY_LEN:
        raise FormatError("key must be 32 bytes")
    nonce = secrets.token_bytes(NONCE_LEN)
    sealed = AESGCM(key).encrypt(nonce, _as_bytes(plaintext), CIPHER_VERSION)
    return _b64e(CIPHER_VERSION + nonce + sealed)


def decrypt(cipher_text: str, key: bytes) -> bytes:
    try:
        blob = _b64d(cipher_text)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise DecryptionFailed() from exc
    # version byte + nonce + 16-byte tag at minimum
    if len(blob) < 1 + NONCE_LEN + 16 or blob[:1] != CIPHER_VERSION or len(key) != KEY_LEN:
        raise DecryptionFailed()
    nonce, sealed = blob[1 : 1 + NONCE_LEN], blob[1 + NONCE_LEN :]
    try:
        return AESGCM(key).decrypt(nonce, sealed, CIPHER_VERSION)
    except InvalidTag as exc:
        raise DecryptionFailed() from exc


def hash_document(plaintext: Data) -> str:
    """Content address of a document: SHA-256, lowercase hex."""
    return hashlib.sha256(_as_bytes(plaintext)).hexdigest()


def generate_id() -> str:
    """128 random bits; never derived from document content."""
    return secrets.token_hex(16)


def encrypt_with_passkey(plaintext: Data, passkey: str, **kdf) -> str:
    return encrypt(plaintext, derive_key(passkey, **kdf))


def decrypt_with_passkey(cipher_text: str, passkey: str, **kdf) -> bytes:
    try:
        key = derive_key(passkey, **kdf)
    except FormatError as exc:
        raise DecryptionFailed() from exc
    return decrypt(cipher_text, key)


def encode_plain(plaintext: Data) -> str:
    """Transport form for documents shared without encryption."""
    return _b64e(_as_bytes(plaintext))


def decode_plain(body: str) -> bytes:
    try:
        return _b64d(body)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise FormatError("document body is not valid base64") from exc
