"""Ed25519 ledger wallet: holds the credential used to write anchors."""
from __future__ import annotations

import hashlib
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, PublicFormat, NoEncryption

from ..errors import ConfigurationError


def generate_keypair() -> Tuple[bytes, bytes]:
    private_key = Ed25519PrivateKey.generate()
    public_key = private_key.public_key()
    return (
        private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption()),
        public_key.public_bytes(Encoding.Raw, PublicFormat.Raw),
    )


def address_for(public_bytes: bytes) -> str:
    """Ledger account address: 0x + first 20 bytes of sha256(pubkey)."""
    return "0x" + hashlib.sha256(public_bytes).hexdigest()[:40]


def verify_signature(public_bytes: bytes, message: bytes, signature: bytes) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(public_bytes).verify(signature, message)
    except (InvalidSignature, ValueError):
        return False
    return True


class LedgerWallet:
    """Signing collaborator for the hash registry."""

    def __init__(self, private_bytes: bytes) -> None:
        try:
            self._key = Ed25519PrivateKey.from_private_bytes(private_bytes)
        except ValueError as exc:
            raise ConfigurationError("wallet private key is not a raw Ed25519 key") from exc
        self.public_bytes = self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.address = address_for(self.public_bytes)

    @classmethod
    def generate(cls) -> "LedgerWallet":
        private_bytes, _ = generate_keypair()
        return cls(private_bytes)

    @classmethod
    def from_hex(cls, private_hex: Optional[str]) -> "LedgerWallet":
        if not private_hex:
            raise ConfigurationError("wallet private key is not configured")
        try:
            return cls(bytes.fromhex(private_hex))
        except ValueError as exc:
            raise ConfigurationError("wallet private key is not hex") from exc

    @property
    def public_key_hex(self) -> str:
        return self.public_bytes.hex()

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)
