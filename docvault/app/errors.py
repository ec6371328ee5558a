"""Error taxonomy shared by services, routers and scripts."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

log = structlog.get_logger(__name__)


class DocVaultError(Exception):
    code = "ERROR"
    status = 500
    retryable = False

    def __init__(self, message: Optional[str] = None, extra: Optional[dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra or {}


class FormatError(DocVaultError):
    """Input rejected before any costly work was attempted."""

    code = "FormatError"
    status = 422


class ConfigurationError(DocVaultError):
    code = "ConfigurationError"
    status = 500


class NotFoundError(DocVaultError):
    code = "NotFound"
    status = 404


class ConflictError(DocVaultError):
    code = "Conflict"
    status = 409


class InvalidTransition(DocVaultError):
    code = "InvalidTransition"
    status = 409


# --- authentication -------------------------------------------------------

class AuthError(DocVaultError):
    code = "AuthError"
    status = 401


class Expired(AuthError):
    code = "Expired"


class Malformed(AuthError):
    code = "Malformed"


class Revoked(AuthError):
    code = "Revoked"


class RoleMismatch(AuthError):
    code = "RoleMismatch"
    status = 403


class InvalidCredentials(AuthError):
    code = "InvalidCredentials"


# --- crypto / integrity ---------------------------------------------------

class CryptoError(DocVaultError):
    code = "CryptoError"
    status = 400


class DecryptionFailed(CryptoError):
    """Wrong passkey and corrupted cipher text are indistinguishable."""

    code = "DecryptionFailed"
    retryable = True


class IntegrityError(DocVaultError):
    code = "IntegrityError"
    status = 409


class TamperedPayload(IntegrityError):
    code = "TamperedPayload"


class NotAnchored(IntegrityError):
    """Locally consistent, but the ledger has no record of the hash."""

    code = "NotAnchored"
    status = 404


# --- verification payloads ------------------------------------------------

class PayloadError(DocVaultError):
    code = "PayloadError"
    status = 400


class UnparseableToken(PayloadError):
    code = "UnparseableToken"


class UnsupportedVersion(PayloadError):
    code = "UnsupportedVersion"


# --- ledger ---------------------------------------------------------------

class LedgerError(DocVaultError):
    code = "LedgerError"
    status = 502


class AlreadyAnchored(LedgerError):
    code = "AlreadyAnchored"
    status = 409

    def __init__(self, message: Optional[str] = None, anchored_at_block: Optional[int] = None):
        super().__init__(message, extra={"anchored_at_block": anchored_at_block})
        self.anchored_at_block = anchored_at_block


class TransportError(LedgerError):
    code = "TransportError"


class InsufficientFunds(LedgerError):
    code = "InsufficientFunds"
    status = 402


class StalenessWindow(LedgerError):
    """The ledger has not finalized the write yet; ask again later."""

    code = "StalenessWindow"
    status = 503
    retryable = True


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DocVaultError)
    async def _handle(request: Request, exc: DocVaultError) -> JSONResponse:
        if exc.status >= 500:
            log.warning("request_failed", path=request.url.path, code=exc.code, detail=exc.message)
        body: dict[str, Any] = {"code": exc.code, "message": exc.message}
        if exc.extra:
            body["extra"] = exc.extra
        return JSONResponse(status_code=exc.status, content=body)
