import pytest

from docvault.app.domain import crypto
from docvault.app.domain.documents import DocumentRecord
from docvault.app.errors import DecryptionFailed, FormatError

KDF = {"iterations": 1_000}


def test_encrypt_round_trip():
    key = crypto.derive_key("abc", **KDF)
    sealed = crypto.encrypt("Birth Certificate #42", key)
    assert crypto.decrypt(sealed, key) == b"Birth Certificate #42"


def test_encrypt_uses_fresh_nonce():
    key = crypto.derive_key("abc", **KDF)
    assert crypto.encrypt("same text", key) != crypto.encrypt("same text", key)


def test_derive_key_is_deterministic():
    assert crypto.derive_key("abc", **KDF) == crypto.derive_key("abc", **KDF)
    assert crypto.derive_key("abc", **KDF) != crypto.derive_key("abd", **KDF)
    assert len(crypto.derive_key("abc", **KDF)) == crypto.KEY_LEN


def test_derive_key_rejects_empty_passkey():
    with pytest.raises(FormatError):
        crypto.derive_key("")


def test_wrong_key_fails_as_decryption_error():
    sealed = crypto.encrypt_with_passkey("hello", "abc", **KDF)
    with pytest.raises(DecryptionFailed) as exc:
        crypto.decrypt_with_passkey(sealed, "wrong", **KDF)
    assert exc.value.retryable


@pytest.mark.parametrize("cipher_text", ["", "not*base64", "AAAA", "AQ" * 40])
def test_garbage_cipher_text_fails_as_decryption_error(cipher_text):
    key = crypto.derive_key("abc", **KDF)
    with pytest.raises(DecryptionFailed):
        crypto.decrypt(cipher_text, key)


def test_tampered_cipher_text_is_rejected():
    key = crypto.derive_key("abc", **KDF)
    sealed = crypto.encrypt("hello", key)
    flipped = sealed[:-2] + ("A" if sealed[-2] != "A" else "B") + sealed[-1]
    with pytest.raises(DecryptionFailed):
        crypto.decrypt(flipped, key)


def test_hash_document_is_sha256_hex():
    assert crypto.hash_document("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert crypto.hash_document(b"abc") == crypto.hash_document("abc")


def test_generate_id_is_random():
    ids = {crypto.generate_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(value) == 32 for value in ids)


def test_plain_encoding_rejects_garbage():
    assert crypto.decode_plain(crypto.encode_plain("plain")) == b"plain"
    with pytest.raises(FormatError):
        crypto.decode_plain("***")


def test_document_record_ids_are_independent_of_content():
    first = DocumentRecord.create("same", "NIC", passkey="abc", **KDF)
    second = DocumentRecord.create("same", "NIC", passkey="abc", **KDF)
    assert first.id != second.id
    assert first.plain_hash == second.plain_hash
    assert first.cipher_text != second.cipher_text


def test_document_record_open():
    record = DocumentRecord.create("ID-12345", "NIC", passkey="abc", **KDF)
    assert record.encrypted
    assert record.open("abc", **KDF) == b"ID-12345"
    with pytest.raises(DecryptionFailed):
        record.open("wrong", **KDF)


def test_revise_produces_new_record():
    record = DocumentRecord.create("v1", "Passport")
    revised = record.revise("v2")
    assert revised.id != record.id
    assert revised.doc_type == "Passport"
    assert revised.plain_hash == crypto.hash_document("v2")
    assert not revised.encrypted
    assert revised.open() == b"v2"
