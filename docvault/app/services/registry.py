"""Hash registry client: anchors document hashes on the ledger oracle."""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ..domain.sign import LedgerWallet
from ..errors import AlreadyAnchored, FormatError, StalenessWindow
from ..infra.ledger import LedgerOracle
from .feed import FeedEntry, TransactionFeed

log = structlog.get_logger(__name__)

_HEX64 = re.compile(r"[0-9a-f]{64}")


def canonical_hash(value: object) -> str:
    """Normalise to ``0x`` + 64 lowercase hex characters or raise FormatError."""
    if not isinstance(value, str):
        raise FormatError("hash must be a string")
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not _HEX64.fullmatch(text):
        raise FormatError("hash must be 64 hexadecimal characters")
    return "0x" + text


@dataclass(frozen=True)
class AnchorReceipt:
    hash: str
    tx_ref: Optional[str]
    anchored_at_block: Optional[int]
    already_anchored: bool = False


@dataclass(frozen=True)
class VerifyResult:
    hash: str
    exists: bool
    anchored_at_block: Optional[int] = None


class RegistryClient:
    """Fail-fast adapter over a ``LedgerOracle``.

    Every call canonicalises its hash before reaching the oracle, so
    malformed input never costs a ledger round trip.
    """

    def __init__(
        self,
        oracle: LedgerOracle,
        wallet: LedgerWallet,
        feed: Optional[TransactionFeed] = None,
        store_timeout: float = 30.0,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.oracle = oracle
        self.wallet = wallet
        self.feed = feed
        self.store_timeout = store_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def store(self, hash_value: str) -> AnchorReceipt:
        """Anchor a hash and wait for its inclusion receipt.

        Raises AlreadyAnchored, InsufficientFunds, TransportError, or
        StalenessWindow when no receipt arrives within ``store_timeout``.
        """
        digest = canonical_hash(hash_value)
        signature = self.wallet.sign(digest.encode("ascii"))
        tx_ref = self.oracle.submit(digest, self.wallet.public_key_hex, signature.hex())
        log.info("anchor_submitted", hash=digest, tx_ref=tx_ref)

        deadline = self._clock() + self.store_timeout
        while True:
            receipt = self.oracle.receipt(tx_ref)
            if receipt is not None:
                break
            if self._clock() >= deadline:
                log.warning("anchor_receipt_timeout", hash=digest, tx_ref=tx_ref)
                raise StalenessWindow(f"no receipt for {tx_ref} yet", extra={"tx_ref": tx_ref})
            self._sleep(self.poll_interval)

        log.info("anchor_confirmed", hash=digest, tx_ref=tx_ref, block=receipt.block)
        if self.feed is not None:
            self.feed.publish(
                FeedEntry(tx_ref=receipt.tx_ref, hash=digest, block=receipt.block, sender=receipt.sender)
            )
        return AnchorReceipt(hash=digest, tx_ref=receipt.tx_ref, anchored_at_block=receipt.block)

    def anchor(self, hash_value: str) -> AnchorReceipt:
        """Idempotent store: an existing anchor counts as success."""
        try:
            return self.store(hash_value)
        except AlreadyAnchored as exc:
            digest = canonical_hash(hash_value)
            block = exc.anchored_at_block
            if block is None:
                block = self.await_visible(digest).anchored_at_block
            log.info("anchor_exists", hash=digest, block=block)
            return AnchorReceipt(hash=digest, tx_ref=None, anchored_at_block=block, already_anchored=True)

    def verify(self, hash_value: str) -> VerifyResult:
        """Point lookup; never writes."""
        digest = canonical_hash(hash_value)
        block = self.oracle.lookup(digest)
        return VerifyResult(hash=digest, exists=block is not None, anchored_at_block=block)

    def await_visible(self, hash_value: str, timeout: Optional[float] = None) -> VerifyResult:
        """Re-issue ``verify`` until the anchor is readable.

        This is also the recovery path after a crash between a successful
        store and the caller's own bookkeeping.
        """
        deadline = self._clock() + (self.store_timeout if timeout is None else timeout)
        while True:
            result = self.verify(hash_value)
            if result.exists:
                return result
            if self._clock() >= deadline:
                raise StalenessWindow(f"{result.hash} not visible on the ledger yet")
            self._sleep(self.poll_interval)
