"""Verification session: from a scanned/pasted payload to Verified or Rejected.

    IDLE -> PAYLOAD_ACQUIRED -> DECODED -> AWAITING_PASSKEY -> HASH_CHECKING
                                       \\-------------------> HASH_CHECKING
    HASH_CHECKING -> VERIFIED | REJECTED

VERIFIED needs both a local hash match and a ledger anchor; either alone is
not enough. Anything unexpected leaves the session unverified.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from ..domain import crypto, payload as codec
from ..domain.payload import VerificationPayload
from ..errors import (
    DecryptionFailed,
    DocVaultError,
    FormatError,
    InvalidTransition,
    NotAnchored,
    PayloadError,
    StalenessWindow,
    TamperedPayload,
)
from .registry import RegistryClient, canonical_hash

log = structlog.get_logger(__name__)


class VerificationState(str, Enum):
    IDLE = "idle"
    PAYLOAD_ACQUIRED = "payload_acquired"
    DECODED = "decoded"
    AWAITING_PASSKEY = "awaiting_passkey"
    HASH_CHECKING = "hash_checking"
    VERIFIED = "verified"
    REJECTED = "rejected"


TERMINAL_STATES = frozenset({VerificationState.VERIFIED, VerificationState.REJECTED})


class PasskeyCache:
    """In-memory passkeys that already opened a document, keyed by doc id."""

    def __init__(self) -> None:
        self._keys: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, doc_id: str) -> Optional[str]:
        with self._lock:
            return self._keys.get(doc_id)

    def put(self, doc_id: str, passkey: str) -> None:
        with self._lock:
            self._keys[doc_id] = passkey

    def forget(self, doc_id: str) -> None:
        with self._lock:
            self._keys.pop(doc_id, None)


@dataclass(frozen=True)
class VerificationOutcome:
    state: VerificationState
    reason: Optional[str] = None
    doc_id: Optional[str] = None
    doc_type: Optional[str] = None
    hash: Optional[str] = None
    anchored_at_block: Optional[int] = None
    passkey_attempts: int = 0

    @property
    def verified(self) -> bool:
        return self.state is VerificationState.VERIFIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "verified": self.verified,
            "reason": self.reason,
            "doc_id": self.doc_id,
            "doc_type": self.doc_type,
            "hash": self.hash,
            "anchored_at_block": self.anchored_at_block,
            "passkey_attempts": self.passkey_attempts,
        }


class VerificationSession:
    def __init__(
        self,
        registry: RegistryClient,
        passkeys: Optional[PasskeyCache] = None,
        anchor_wait: float = 0.0,
        kdf: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.registry = registry
        self.passkeys = passkeys
        self.anchor_wait = anchor_wait
        self.kdf = kdf or {}
        self.reset()

    def reset(self) -> None:
        """Start over for a new scan."""
        self.state = VerificationState.IDLE
        self.token: Optional[str] = None
        self.payload: Optional[VerificationPayload] = None
        self.reason: Optional[str] = None
        self.error: Optional[DocVaultError] = None
        self.anchored_at_block: Optional[int] = None
        self.passkey_attempts = 0
        self._plaintext: Optional[bytes] = None
        self._passkey: Optional[str] = None

    # -- transitions -------------------------------------------------------

    def _expect(self, *states: VerificationState) -> None:
        if self.state not in states:
            raise InvalidTransition(f"cannot continue from {self.state.value}")

    def _reject(self, error: DocVaultError) -> VerificationState:
        self.state = VerificationState.REJECTED
        self.reason = error.code
        self.error = error
        self._plaintext = None
        log.info("verification_rejected", reason=error.code, doc_id=self.payload.doc_id if self.payload else None)
        return self.state

    def acquire(self, raw: str) -> VerificationState:
        """Accept scanner or clipboard input. Bad input raises and stays IDLE."""
        self._expect(VerificationState.IDLE)
        self.token = codec.extract_token(raw)
        self.state = VerificationState.PAYLOAD_ACQUIRED
        return self.state

    def decode(self) -> VerificationState:
        self._expect(VerificationState.PAYLOAD_ACQUIRED)
        try:
            self.payload = codec.decode(self.token or "")
        except PayloadError as exc:
            return self._reject(exc)
        self.state = VerificationState.DECODED

        if not self.payload.encrypted:
            try:
                self._plaintext = crypto.decode_plain(self.payload.cipher_text)
            except FormatError:
                return self._reject(TamperedPayload("document body is corrupt"))
            self.state = VerificationState.HASH_CHECKING
            return self.state

        cached = self.passkeys.get(self.payload.doc_id) if self.passkeys else None
        if cached is not None:
            try:
                self._open(cached)
                return self.state
            except DecryptionFailed:
                self.passkeys.forget(self.payload.doc_id)
        self.state = VerificationState.AWAITING_PASSKEY
        return self.state

    def _open(self, passkey: str) -> None:
        self._plaintext = crypto.decrypt_with_passkey(self.payload.cipher_text, passkey, **self.kdf)
        self._passkey = passkey
        self.state = VerificationState.HASH_CHECKING

    def submit_passkey(self, passkey: str) -> VerificationState:
        """Try a passkey. A wrong one raises DecryptionFailed; retries are unlimited."""
        self._expect(VerificationState.AWAITING_PASSKEY)
        self.passkey_attempts += 1
        try:
            self._open(passkey)
        except DecryptionFailed:
            log.info("passkey_rejected", doc_id=self.payload.doc_id, attempts=self.passkey_attempts)
            raise
        return self.state

    def check(self) -> VerificationState:
        """Compare the recomputed hash with the declared one, then ask the ledger.

        Ledger failures propagate and leave the session in HASH_CHECKING so the
        check can be re-issued.
        """
        self._expect(VerificationState.HASH_CHECKING)
        actual = canonical_hash(crypto.hash_document(self._plaintext or b""))
        try:
            declared = canonical_hash(self.payload.hash)
        except FormatError:
            declared = None
        if declared != actual:
            return self._reject(TamperedPayload("document does not match its declared hash"))

        if self.anchor_wait > 0:
            try:
                result = self.registry.await_visible(declared, timeout=self.anchor_wait)
            except StalenessWindow:
                result = self.registry.verify(declared)
        else:
            result = self.registry.verify(declared)

        if not result.exists:
            return self._reject(NotAnchored("hash is not anchored on the ledger"))

        self.anchored_at_block = result.anchored_at_block
        self.state = VerificationState.VERIFIED
        if self.passkeys is not None and self._passkey is not None:
            self.passkeys.put(self.payload.doc_id, self._passkey)
        log.info("verification_passed", doc_id=self.payload.doc_id, block=result.anchored_at_block)
        return self.state

    def run(self, raw: str, passkey: Optional[str] = None) -> VerificationOutcome:
        """Drive a fresh session as far as the inputs allow."""
        if self.state is not VerificationState.IDLE:
            self.reset()
        self.acquire(raw)
        self.decode()
        if self.state is VerificationState.AWAITING_PASSKEY and passkey:
            self.submit_passkey(passkey)
        if self.state is VerificationState.HASH_CHECKING:
            self.check()
        return self.outcome

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def plaintext(self) -> Optional[bytes]:
        """Opened document, available only once verified."""
        return self._plaintext if self.state is VerificationState.VERIFIED else None

    @property
    def outcome(self) -> VerificationOutcome:
        return VerificationOutcome(
            state=self.state,
            reason=self.reason,
            doc_id=self.payload.doc_id if self.payload else None,
            doc_type=self.payload.doc_type if self.payload else None,
            hash=self.payload.hash if self.payload else None,
            anchored_at_block=self.anchored_at_block,
            passkey_attempts=self.passkey_attempts,
        )
