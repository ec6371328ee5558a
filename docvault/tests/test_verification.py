import base64
import dataclasses
import zlib

import pytest

from docvault.app.domain import payload as codec
from docvault.app.domain.documents import DocumentRecord
from docvault.app.domain.sign import LedgerWallet
from docvault.app.errors import DecryptionFailed, FormatError, InvalidTransition, TransportError
from docvault.app.infra.ledger import InMemoryLedger
from docvault.app.services.registry import RegistryClient, VerifyResult
from docvault.app.services.verification import PasskeyCache, VerificationSession, VerificationState

KDF = {"iterations": 1_000}


def setup_registry():
    wallet = LedgerWallet.generate()
    ledger = InMemoryLedger()
    ledger.register_account(wallet.public_bytes, balance=10)
    return RegistryClient(ledger, wallet, sleep=lambda _: None)


def anchored_token(registry, plaintext="ID-12345", passkey="abc"):
    record = DocumentRecord.create(plaintext, "NIC", passkey=passkey, **KDF)
    registry.anchor(record.plain_hash)
    return record, codec.encode(record)


def test_wrong_passkey_then_right_one():
    registry = setup_registry()
    record, token = anchored_token(registry)
    session = VerificationSession(registry, kdf=KDF)

    assert session.acquire(token) is VerificationState.PAYLOAD_ACQUIRED
    assert session.decode() is VerificationState.AWAITING_PASSKEY

    with pytest.raises(DecryptionFailed):
        session.submit_passkey("wrong")
    assert session.state is VerificationState.AWAITING_PASSKEY

    assert session.submit_passkey("abc") is VerificationState.HASH_CHECKING
    assert session.check() is VerificationState.VERIFIED
    assert session.plaintext == b"ID-12345"

    outcome = session.outcome
    assert outcome.verified
    assert outcome.doc_id == record.id
    assert outcome.anchored_at_block == 1
    assert outcome.passkey_attempts == 2


def test_tampered_payload_is_rejected():
    registry = setup_registry()
    record, _ = anchored_token(registry)
    forged = DocumentRecord.create("ID-99999", "NIC", passkey="abc", **KDF)
    token = codec.encode_payload(
        codec.VerificationPayload(doc_id=record.id, cipher_text=forged.cipher_text, hash=record.plain_hash)
    )

    outcome = VerificationSession(registry, kdf=KDF).run(token, passkey="abc")
    assert outcome.state is VerificationState.REJECTED
    assert outcome.reason == "TamperedPayload"
    assert not outcome.verified


def test_unanchored_document_is_rejected():
    registry = setup_registry()
    record = DocumentRecord.create("never anchored", "NIC", passkey="abc", **KDF)

    session = VerificationSession(registry, kdf=KDF)
    outcome = session.run(codec.encode(record), passkey="abc")
    assert outcome.state is VerificationState.REJECTED
    assert outcome.reason == "NotAnchored"
    assert session.plaintext is None


def test_unencrypted_document_skips_passkey():
    registry = setup_registry()
    record = DocumentRecord.create("public notice", "Notice")
    registry.anchor(record.plain_hash)

    session = VerificationSession(registry)
    session.acquire(codec.verification_url(codec.encode(record), "https://verify.example/verify"))
    assert session.decode() is VerificationState.HASH_CHECKING
    assert session.check() is VerificationState.VERIFIED
    assert session.passkey_attempts == 0


def test_cached_passkey_skips_prompt():
    registry = setup_registry()
    _, token = anchored_token(registry)
    cache = PasskeyCache()

    first = VerificationSession(registry, passkeys=cache, kdf=KDF)
    assert first.run(token, passkey="abc").verified

    second = VerificationSession(registry, passkeys=cache, kdf=KDF)
    second.acquire(token)
    assert second.decode() is VerificationState.HASH_CHECKING
    assert second.check() is VerificationState.VERIFIED


def test_unparseable_token_is_rejected():
    session = VerificationSession(setup_registry())
    session.acquire("dv.AAAA")
    assert session.decode() is VerificationState.REJECTED
    assert session.reason == "UnparseableToken"
    assert session.finished


def test_bad_input_keeps_session_idle():
    session = VerificationSession(setup_registry())
    with pytest.raises(FormatError):
        session.acquire("not a payload at all")
    assert session.state is VerificationState.IDLE


def test_out_of_order_calls_are_refused():
    registry = setup_registry()
    _, token = anchored_token(registry)
    session = VerificationSession(registry, kdf=KDF)
    with pytest.raises(InvalidTransition):
        session.check()
    session.acquire(token)
    with pytest.raises(InvalidTransition):
        session.submit_passkey("abc")


def test_ledger_failure_never_verifies():
    registry = setup_registry()
    _, token = anchored_token(registry)

    class BrokenRegistry:
        def verify(self, hash_value):
            raise TransportError("ledger down")

    session = VerificationSession(BrokenRegistry(), kdf=KDF)
    session.acquire(token)
    session.decode()
    session.submit_passkey("abc")
    with pytest.raises(TransportError):
        session.check()
    assert session.state is VerificationState.HASH_CHECKING
    assert session.plaintext is None


def test_anchor_wait_falls_back_to_a_single_lookup():
    calls = []

    class SlowRegistry:
        def await_visible(self, hash_value, timeout=None):
            calls.append(("await", timeout))
            return VerifyResult(hash=hash_value, exists=True, anchored_at_block=4)

        def verify(self, hash_value):
            calls.append(("verify", None))
            return VerifyResult(hash=hash_value, exists=False)

    record = DocumentRecord.create("waiting", "NIC")
    session = VerificationSession(SlowRegistry(), anchor_wait=2.0)
    outcome = session.run(codec.encode(record))
    assert outcome.verified
    assert outcome.anchored_at_block == 4
    assert calls == [("await", 2.0)]


def test_flipped_declared_hash_is_tampered():
    registry = setup_registry()
    record, token = anchored_token(registry)
    decoded = codec.decode(token)
    flipped_char = "0" if decoded.hash[5] != "0" else "1"
    altered = dataclasses.replace(decoded, hash=decoded.hash[:5] + flipped_char + decoded.hash[6:])
    altered_token = codec.encode_payload(altered)

    assert codec.decode(altered_token).hash != record.plain_hash
    outcome = VerificationSession(registry, kdf=KDF).run(altered_token, passkey="abc")
    assert outcome.state is VerificationState.REJECTED
    assert outcome.reason == "TamperedPayload"
    assert registry.verify(record.plain_hash).exists


def test_corrupt_unencrypted_body_is_tampered():
    registry = setup_registry()
    record = DocumentRecord.create("public notice", "Notice")
    registry.anchor(record.plain_hash)
    token = codec.encode_payload(
        codec.VerificationPayload(doc_id=record.id, cipher_text="A", hash=record.plain_hash, encrypted=False)
    )

    session = VerificationSession(registry)
    session.acquire(token)
    assert session.decode() is VerificationState.REJECTED
    assert session.reason == "TamperedPayload"


def test_deeply_nested_token_is_rejected():
    packed = base64.urlsafe_b64encode(zlib.compress(b"[" * 200_000)).rstrip(b"=").decode("ascii")
    session = VerificationSession(setup_registry())
    session.acquire(codec.TOKEN_PREFIX + packed)
    assert session.decode() is VerificationState.REJECTED
    assert session.reason == "UnparseableToken"
