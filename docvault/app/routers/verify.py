"""Public verification endpoints for scanned or pasted payloads."""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from ..deps import Services, get_services
from ..domain.payload import extract_token, verification_url
from ..domain.schemas import VerifyOut, VerifyRequest
from ..errors import DecryptionFailed
from ..infra.qr import render_qr_png
from ..services.verification import VerificationSession, VerificationState

router = APIRouter()


@router.post("", response_model=VerifyOut)
def verify_payload(payload: VerifyRequest, services: Services = Depends(get_services)):
    session = VerificationSession(services.registry, passkeys=services.passkeys, kdf=services.kdf)
    retryable = False
    try:
        outcome = session.run(payload.input, passkey=payload.passkey)
    except DecryptionFailed as exc:
        outcome, retryable = session.outcome, exc.retryable
        reason = exc.code
    else:
        reason = outcome.reason

    services.audit.record(
        actor_id="verifier",
        role="public",
        action="verify_payload",
        resource=outcome.doc_id or "unknown",
        allowed=outcome.verified,
        detail=reason or outcome.state.value,
    )
    body = outcome.to_dict()
    body.update(reason=reason, retryable=retryable or outcome.state is VerificationState.AWAITING_PASSKEY)
    return VerifyOut(**body)


@router.get("/qr", response_class=Response)
def payload_qr(token: str = Query(...), services: Services = Depends(get_services)):
    url = verification_url(extract_token(token), services.settings.verify_base_url)
    return Response(content=render_qr_png(url), media_type="image/png")
