from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .app.domain import payload as codec
from .app.domain.documents import DocumentRecord
from .app.errors import NotFoundError
from .app.infra.qr import render_qr_png
from .app.services.registry import AnchorReceipt, RegistryClient, VerifyResult


@dataclass(frozen=True)
class SharedDocument:
    """What a holder hands to a verifier: the token, as a link and a QR image."""

    token: str
    url: str

    def qr_png(self) -> bytes:
        return render_qr_png(self.url)


@dataclass
class DocumentVault:
    """A holder's documents plus their ledger anchors.

    Records are never edited in place: ``revise`` stores a new record with a
    new id and hash and anchors that hash separately.
    """

    registry: RegistryClient
    verify_base_url: str
    kdf: Optional[dict] = None

    def __post_init__(self) -> None:
        self._records: Dict[str, DocumentRecord] = {}
        self._anchors: Dict[str, AnchorReceipt] = {}

    def add_document(
        self,
        plaintext: Union[str, bytes],
        doc_type: str,
        passkey: Optional[str] = None,
    ) -> DocumentRecord:
        record = DocumentRecord.create(plaintext, doc_type, passkey=passkey, **(self.kdf or {}))
        # keep the record even if anchoring fails; recover() retries later
        self._records[record.id] = record
        self._anchors[record.id] = self.registry.anchor(record.plain_hash)
        return record

    def revise(self, doc_id: str, plaintext: Union[str, bytes], passkey: Optional[str] = None) -> DocumentRecord:
        previous = self.get(doc_id)
        return self.add_document(plaintext, previous.doc_type, passkey=passkey)

    def get(self, doc_id: str) -> DocumentRecord:
        try:
            return self._records[doc_id]
        except KeyError as exc:
            raise NotFoundError(f"document {doc_id} not in vault") from exc

    def documents(self) -> List[DocumentRecord]:
        return sorted(self._records.values(), key=lambda r: r.created_at)

    def anchor_for(self, doc_id: str) -> Optional[AnchorReceipt]:
        return self._anchors.get(doc_id)

    def recover(self, doc_id: str) -> AnchorReceipt:
        """Settle a record whose anchoring outcome was lost.

        Re-reads the ledger first; only a hash the ledger has never seen is
        submitted again. Nothing is rolled back.
        """
        record = self.get(doc_id)
        result: VerifyResult = self.registry.verify(record.plain_hash)
        if result.exists:
            receipt = AnchorReceipt(
                hash=result.hash,
                tx_ref=None,
                anchored_at_block=result.anchored_at_block,
                already_anchored=True,
            )
        else:
            receipt = self.registry.anchor(record.plain_hash)
        self._anchors[doc_id] = receipt
        return receipt

    def share(self, doc_id: str) -> SharedDocument:
        record = self.get(doc_id)
        anchor = self._anchors.get(doc_id)
        token = codec.encode(record, anchor.tx_ref if anchor else None)
        return SharedDocument(token=token, url=codec.verification_url(token, self.verify_base_url))
