"""Client-held document records."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from . import crypto


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DocumentRecord:
    """Immutable snapshot of a document as held by its owner.

    ``cipher_text`` is AES-GCM output when ``encrypted`` is true, otherwise
    the base64url plaintext. ``plain_hash`` is always the hash of the
    plaintext. Editing means building a new record with ``revise``.
    """

    id: str
    doc_type: str
    cipher_text: str
    plain_hash: str
    encrypted: bool = True
    created_at: str = field(default_factory=_now)

    @classmethod
    def create(
        cls,
        plaintext: Union[str, bytes],
        doc_type: str,
        passkey: Optional[str] = None,
        key: Optional[bytes] = None,
        **kdf,
    ) -> "DocumentRecord":
        if passkey is not None and key is None:
            key = crypto.derive_key(passkey, **kdf)
        if key is not None:
            body = crypto.encrypt(plaintext, key)
        else:
            body = crypto.encode_plain(plaintext)
        return cls(
            id=crypto.generate_id(),
            doc_type=doc_type,
            cipher_text=body,
            plain_hash=crypto.hash_document(plaintext),
            encrypted=key is not None,
        )

    def revise(self, plaintext: Union[str, bytes], passkey: Optional[str] = None, **kdf) -> "DocumentRecord":
        return DocumentRecord.create(plaintext, self.doc_type, passkey=passkey, **kdf)

    def open(self, passkey: Optional[str] = None, **kdf) -> bytes:
        if not self.encrypted:
            return crypto.decode_plain(self.cipher_text)
        return crypto.decrypt_with_passkey(self.cipher_text, passkey or "", **kdf)
