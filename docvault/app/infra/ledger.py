"""Append-only ledger oracles behind the hash registry client.

Two implementations share the ``LedgerOracle`` protocol:

* ``InMemoryLedger`` simulates a chain (blocks, fees, signed submissions and
  a finality depth that delays read visibility). Used for local runs and
  tests.
* ``HttpLedgerGateway`` talks to a REST gateway in front of a real chain.

Both accept only canonical ``0x``-prefixed hashes; canonicalisation happens
in the registry client before any oracle call.
"""
from __future__ import annotations

import hashlib
import itertools
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import httpx
import structlog

from ..domain.sign import address_for, verify_signature
from ..errors import AlreadyAnchored, InsufficientFunds, TransportError

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LedgerReceipt:
    tx_ref: str
    hash: str
    block: int
    sender: str


@dataclass(frozen=True)
class RegistryEntry:
    hash: str
    anchored_at_block: int


class LedgerOracle(Protocol):
    def submit(self, hash_hex: str, public_key_hex: str, signature_hex: str) -> str:
        """Queue an anchor write; returns a transaction reference."""

    def receipt(self, tx_ref: str) -> Optional[LedgerReceipt]:
        """Inclusion receipt, or None while the transaction is pending."""

    def lookup(self, hash_hex: str) -> Optional[int]:
        """Block of a finalized anchor, or None."""


@dataclass
class _Account:
    public_key: bytes
    balance: int


@dataclass
class _Tx:
    tx_ref: str
    hash: str
    sender: str
    block: Optional[int] = None


class InMemoryLedger:
    """Thread-safe simulated chain.

    ``auto_mine`` seals each submission into its own block. A hash becomes
    visible to ``lookup`` once its block has ``finality_depth``
    confirmations (the including block counts as one).
    """

    def __init__(self, finality_depth: int = 1, fee: int = 1, auto_mine: bool = True) -> None:
        self.finality_depth = max(1, finality_depth)
        self.fee = fee
        self.auto_mine = auto_mine
        self.height = 0
        self._lock = threading.RLock()
        self._accounts: Dict[str, _Account] = {}
        self._txs: Dict[str, _Tx] = {}
        self._by_hash: Dict[str, _Tx] = {}
        self._pending: List[_Tx] = []
        self._nonce = itertools.count()

    def register_account(self, public_key: bytes, balance: int = 0) -> str:
        address = address_for(public_key)
        with self._lock:
            account = self._accounts.get(address)
            if account:
                account.balance += balance
            else:
                self._accounts[address] = _Account(public_key=public_key, balance=balance)
        return address

    def balance(self, address: str) -> int:
        with self._lock:
            account = self._accounts.get(address)
            return account.balance if account else 0

    def submit(self, hash_hex: str, public_key_hex: str, signature_hex: str) -> str:
        try:
            public_key = bytes.fromhex(public_key_hex)
            signature = bytes.fromhex(signature_hex)
        except ValueError as exc:
            raise TransportError("submission is not hex encoded") from exc
        sender = address_for(public_key)

        with self._lock:
            account = self._accounts.get(sender)
            if account is None or account.public_key != public_key:
                raise TransportError("sender account is not registered")
            if not verify_signature(public_key, hash_hex.encode("ascii"), signature):
                raise TransportError("submission signature rejected")
            existing = self._by_hash.get(hash_hex)
            if existing is not None:
                raise AlreadyAnchored("hash already anchored", anchored_at_block=existing.block)
            if account.balance < self.fee:
                raise InsufficientFunds(f"balance {account.balance} below fee {self.fee}")

            account.balance -= self.fee
            seed = f"{hash_hex}:{sender}:{next(self._nonce)}".encode("ascii")
            tx = _Tx(tx_ref="0x" + hashlib.sha256(seed).hexdigest(), hash=hash_hex, sender=sender)
            self._txs[tx.tx_ref] = tx
            self._by_hash[hash_hex] = tx
            self._pending.append(tx)
            if self.auto_mine:
                self.mine()
            return tx.tx_ref

    def mine(self, blocks: int = 1) -> int:
        """Seal pending transactions into the next block, then add empty blocks."""
        with self._lock:
            for _ in range(blocks):
                self.height += 1
                for tx in self._pending:
                    tx.block = self.height
                self._pending.clear()
            return self.height

    def receipt(self, tx_ref: str) -> Optional[LedgerReceipt]:
        with self._lock:
            tx = self._txs.get(tx_ref)
            if tx is None or tx.block is None:
                return None
            return LedgerReceipt(tx_ref=tx.tx_ref, hash=tx.hash, block=tx.block, sender=tx.sender)

    def lookup(self, hash_hex: str) -> Optional[int]:
        with self._lock:
            tx = self._by_hash.get(hash_hex)
            if tx is None or tx.block is None:
                return None
            if self.height - tx.block + 1 < self.finality_depth:
                return None
            return tx.block

    def entries(self) -> List[RegistryEntry]:
        with self._lock:
            return [
                RegistryEntry(hash=tx.hash, anchored_at_block=tx.block)
                for tx in self._by_hash.values()
                if tx.block is not None
            ]


class HttpLedgerGateway:
    """REST client for a ledger gateway service.

    Endpoints:
        POST /hashes              {hash, public_key, signature} -> {tx_ref}
        GET  /transactions/{ref}  -> {tx_ref, hash, block, sender, status}
        GET  /hashes/{hash}       -> {exists, anchored_at_block}
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def __enter__(self) -> "HttpLedgerGateway":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            log.warning("ledger_gateway_unreachable", url=url, error=str(exc))
            raise TransportError(f"ledger gateway unreachable: {exc}") from exc
        if response.status_code >= 500:
            raise TransportError(f"ledger gateway error {response.status_code}")
        return response

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError("ledger gateway returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise TransportError("ledger gateway returned an unexpected body")
        return data

    def submit(self, hash_hex: str, public_key_hex: str, signature_hex: str) -> str:
        response = self._request(
            "POST",
            "/hashes",
            json={"hash": hash_hex, "public_key": public_key_hex, "signature": signature_hex},
        )
        if response.status_code == 409:
            block = self._json(response).get("anchored_at_block")
            raise AlreadyAnchored("hash already anchored", anchored_at_block=block)
        if response.status_code == 402:
            raise InsufficientFunds("ledger account cannot pay the anchoring fee")
        if response.status_code not in (200, 201, 202):
            raise TransportError(f"ledger gateway rejected submission ({response.status_code})")
        tx_ref = self._json(response).get("tx_ref")
        if not isinstance(tx_ref, str):
            raise TransportError("ledger gateway response lacks tx_ref")
        return tx_ref

    def receipt(self, tx_ref: str) -> Optional[LedgerReceipt]:
        response = self._request("GET", f"/transactions/{tx_ref}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise TransportError(f"ledger gateway receipt error ({response.status_code})")
        data = self._json(response)
        status = data.get("status")
        if status == "pending":
            return None
        if status != "confirmed":
            raise TransportError(f"transaction {tx_ref} {status or 'failed'}")
        try:
            return LedgerReceipt(
                tx_ref=data["tx_ref"],
                hash=data["hash"],
                block=int(data["block"]),
                sender=data.get("sender", ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportError("ledger gateway receipt is incomplete") from exc

    def lookup(self, hash_hex: str) -> Optional[int]:
        response = self._request("GET", f"/hashes/{hash_hex}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise TransportError(f"ledger gateway lookup error ({response.status_code})")
        data = self._json(response)
        if not data.get("exists"):
            return None
        block = data.get("anchored_at_block")
        if not isinstance(block, int):
            raise TransportError("ledger gateway lookup lacks a block number")
        return block
