import pytest

from docvault import DocumentVault
from docvault.app.domain.sign import LedgerWallet
from docvault.app.errors import NotFoundError, TransportError
from docvault.app.infra.ledger import InMemoryLedger
from docvault.app.services.registry import RegistryClient
from docvault.app.services.verification import VerificationSession, VerificationState

KDF = {"iterations": 1_000}


def setup_vault():
    wallet = LedgerWallet.generate()
    ledger = InMemoryLedger()
    ledger.register_account(wallet.public_bytes, balance=10)
    registry = RegistryClient(ledger, wallet, sleep=lambda _: None)
    return ledger, DocumentVault(registry, "https://verify.test/verify", kdf=KDF)


def test_shared_document_verifies():
    _, vault = setup_vault()
    record = vault.add_document("ID-12345", "NIC", passkey="abc")
    shared = vault.share(record.id)
    assert shared.url.startswith("https://verify.test/verify?token=dv.")

    session = VerificationSession(vault.registry, kdf=KDF)
    outcome = session.run(shared.url, passkey="abc")
    assert outcome.verified
    assert session.plaintext == b"ID-12345"
    assert shared.qr_png().startswith(b"\x89PNG")


def test_revise_anchors_a_new_hash():
    ledger, vault = setup_vault()
    original = vault.add_document("v1", "Passport")
    revised = vault.revise(original.id, "v2")
    assert revised.id != original.id
    assert revised.plain_hash != original.plain_hash
    assert len(ledger.entries()) == 2
    assert [r.id for r in vault.documents()] == [original.id, revised.id]


def test_unknown_document():
    _, vault = setup_vault()
    with pytest.raises(NotFoundError):
        vault.share("missing")


def test_recover_after_lost_anchor_outcome():
    ledger, vault = setup_vault()

    class FlakyRegistry:
        """Anchors on the ledger but loses the reply."""

        def __init__(self, inner):
            self.inner = inner

        def anchor(self, hash_value):
            self.inner.anchor(hash_value)
            raise TransportError("connection reset")

        def __getattr__(self, name):
            return getattr(self.inner, name)

    real = vault.registry
    vault.registry = FlakyRegistry(real)
    with pytest.raises(TransportError):
        vault.add_document("Degree", "Certificate")
    record = vault.documents()[0]
    assert vault.anchor_for(record.id) is None

    vault.registry = real
    receipt = vault.recover(record.id)
    assert receipt.already_anchored
    assert receipt.anchored_at_block == 1
    assert len(ledger.entries()) == 1


def test_recover_anchors_when_ledger_never_saw_the_hash():
    ledger, vault = setup_vault()

    class DownRegistry:
        def anchor(self, hash_value):
            raise TransportError("ledger down")

    real = vault.registry
    vault.registry = DownRegistry()
    with pytest.raises(TransportError):
        vault.add_document("Degree", "Certificate")
    record = vault.documents()[0]

    vault.registry = real
    receipt = vault.recover(record.id)
    assert not receipt.already_anchored
    assert len(ledger.entries()) == 1

    session = VerificationSession(real)
    session.acquire(vault.share(record.id).token)
    session.decode()
    assert session.check() is VerificationState.VERIFIED
