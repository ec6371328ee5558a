"""Verification payload codec.

A payload travels as ``dv.<base64url(zlib(json))>``: safe inside a URL
query parameter and compact enough for a QR symbol. Decoding only parses;
whether the content is genuine is decided by the verification session.
"""
from __future__ import annotations

import base64
import binascii
import json
import re
import zlib
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from ..errors import FormatError, UnparseableToken, UnsupportedVersion
from .documents import DocumentRecord

SCHEMA_VERSION = 1
SUPPORTED_VERSIONS = frozenset({SCHEMA_VERSION})
TOKEN_PREFIX = "dv."
TOKEN_PARAM = "token"
MAX_INPUT_LENGTH = 64 * 1024
MAX_JSON_BYTES = 256 * 1024

_TOKEN_CHARS = re.compile(r"[A-Za-z0-9._~\-]+")


@dataclass(frozen=True)
class VerificationPayload:
    doc_id: str
    cipher_text: str
    hash: str
    schema_version: int = SCHEMA_VERSION
    doc_type: str = ""
    encrypted: bool = True
    anchor_ref: Optional[str] = None

    @classmethod
    def from_record(cls, record: DocumentRecord, registry_ref: Optional[str] = None) -> "VerificationPayload":
        return cls(
            doc_id=record.id,
            cipher_text=record.cipher_text,
            hash=record.plain_hash,
            doc_type=record.doc_type,
            encrypted=record.encrypted,
            anchor_ref=registry_ref,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _to_wire(payload: VerificationPayload) -> Dict[str, Any]:
    wire: Dict[str, Any] = {
        "v": payload.schema_version,
        "id": payload.doc_id,
        "ct": payload.cipher_text,
        "h": payload.hash,
        "t": payload.doc_type,
        "e": payload.encrypted,
    }
    if payload.anchor_ref is not None:
        wire["a"] = payload.anchor_ref
    return wire


def encode_payload(payload: VerificationPayload) -> str:
    raw = json.dumps(_to_wire(payload), sort_keys=True, separators=(",", ":")).encode("utf-8")
    packed = base64.urlsafe_b64encode(zlib.compress(raw, 9)).rstrip(b"=").decode("ascii")
    return TOKEN_PREFIX + packed


def encode(record: DocumentRecord, registry_ref: Optional[str] = None) -> str:
    return encode_payload(VerificationPayload.from_record(record, registry_ref))


def extract_token(raw: object) -> str:
    """Accept a verification URL or a bare token and return the token.

    Raises FormatError when the input has neither shape.
    """
    if not isinstance(raw, str):
        raise FormatError("verification input must be text")
    text = raw.strip()
    if not text:
        raise FormatError("verification input is empty")
    if len(text) > MAX_INPUT_LENGTH:
        raise FormatError("verification input is too long")

    if "://" in text:
        parts = urlsplit(text)
        values = parse_qs(parts.query).get(TOKEN_PARAM)
        if not values or not values[0].strip():
            raise FormatError("no token parameter found in URL")
        text = values[0].strip()

    if not _TOKEN_CHARS.fullmatch(text):
        raise FormatError("input is neither a verification URL nor a token")
    return text


def _inflate(body: str) -> bytes:
    data = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
    inflater = zlib.decompressobj()
    raw = inflater.decompress(data, MAX_JSON_BYTES)
    if inflater.unconsumed_tail:
        raise ValueError("payload too large")
    return raw


def decode(raw: str) -> VerificationPayload:
    try:
        token = extract_token(raw)
    except FormatError as exc:
        raise UnparseableToken(exc.message) from exc
    if not token.startswith(TOKEN_PREFIX):
        raise UnparseableToken("not a verification token")

    try:
        wire = json.loads(_inflate(token[len(TOKEN_PREFIX):]).decode("utf-8"))
    except (binascii.Error, zlib.error, ValueError, UnicodeDecodeError, RecursionError) as exc:
        raise UnparseableToken("token body cannot be decoded") from exc
    if not isinstance(wire, dict):
        raise UnparseableToken("token body is not an object")

    version = wire.get("v")
    if not isinstance(version, int) or isinstance(version, bool):
        raise UnparseableToken("token has no schema version")
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(f"schema version {version} is not supported")

    doc_id, cipher_text, digest = wire.get("id"), wire.get("ct"), wire.get("h")
    doc_type, encrypted, anchor = wire.get("t", ""), wire.get("e", True), wire.get("a")
    if not all(isinstance(v, str) and v for v in (doc_id, cipher_text, digest)):
        raise UnparseableToken("token is missing document fields")
    if not isinstance(doc_type, str) or not isinstance(encrypted, bool):
        raise UnparseableToken("token has malformed document metadata")
    if anchor is not None and not isinstance(anchor, str):
        raise UnparseableToken("token has a malformed anchor reference")

    return VerificationPayload(
        doc_id=doc_id,
        cipher_text=cipher_text,
        hash=digest,
        schema_version=version,
        doc_type=doc_type,
        encrypted=encrypted,
        anchor_ref=anchor,
    )


def verification_url(token: str, base_url: str) -> str:
    parts = urlsplit(base_url)
    query = parse_qs(parts.query)
    query[TOKEN_PARAM] = [token]
    return urlunsplit(parts._replace(query=urlencode(query, doseq=True)))
