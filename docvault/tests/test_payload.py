import base64
import json
import zlib

import pytest

from docvault.app.domain import payload as codec
from docvault.app.domain.documents import DocumentRecord
from docvault.app.errors import FormatError, UnparseableToken, UnsupportedVersion


def _token(wire) -> str:
    raw = json.dumps(wire).encode("utf-8")
    return codec.TOKEN_PREFIX + base64.urlsafe_b64encode(zlib.compress(raw)).rstrip(b"=").decode("ascii")


def test_record_survives_encoding():
    record = DocumentRecord.create("ID-12345", "NIC")
    decoded = codec.decode(codec.encode(record, registry_ref="0xabc"))
    assert decoded.doc_id == record.id
    assert decoded.cipher_text == record.cipher_text
    assert decoded.hash == record.plain_hash
    assert decoded.doc_type == "NIC"
    assert decoded.encrypted is False
    assert decoded.anchor_ref == "0xabc"
    assert decoded.schema_version == codec.SCHEMA_VERSION


def test_url_and_bare_token_decode_identically():
    token = codec.encode(DocumentRecord.create("x", "Passport"))
    url = codec.verification_url(token, "https://verify.example.org/verify?lang=en")
    assert "lang=en" in url
    assert codec.extract_token(url) == token
    assert codec.decode(url) == codec.decode(token)


def test_extract_token_rejects_non_payload_input():
    with pytest.raises(FormatError):
        codec.extract_token("")
    with pytest.raises(FormatError):
        codec.extract_token("hello world")
    with pytest.raises(FormatError):
        codec.extract_token("https://verify.example.org/verify?other=1")
    with pytest.raises(FormatError):
        codec.extract_token(None)


def test_unknown_schema_version_is_distinguished():
    token = _token({"v": 99, "id": "a", "ct": "b", "h": "c"})
    with pytest.raises(UnsupportedVersion):
        codec.decode(token)


@pytest.mark.parametrize(
    "token",
    [
        "plain-text-token",
        "dv.@@@",
        "dv.AAAA",
        _token(["not", "an", "object"]),
        _token({"id": "a", "ct": "b", "h": "c"}),
        _token({"v": 1, "id": "a", "ct": "", "h": "c"}),
        _token({"v": 1, "id": "a", "ct": "b", "h": "c", "e": "yes"}),
    ],
)
def test_unparseable_tokens(token):
    with pytest.raises(UnparseableToken):
        codec.decode(token)


def test_decode_does_not_judge_authenticity():
    wire = {"v": 1, "id": "doc", "ct": "garbage", "h": "0" * 64, "t": "NIC", "e": True}
    decoded = codec.decode(_token(wire))
    assert decoded.cipher_text == "garbage"
    assert decoded.encrypted is True


def test_deeply_nested_body_is_unparseable():
    packed = base64.urlsafe_b64encode(zlib.compress(b"[" * 200_000)).rstrip(b"=").decode("ascii")
    with pytest.raises(UnparseableToken):
        codec.decode(codec.TOKEN_PREFIX + packed)
