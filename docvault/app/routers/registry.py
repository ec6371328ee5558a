"""Hash registry routes."""
from typing import List

from fastapi import APIRouter, Depends, status

from ..deps import Services, get_services, require_role
from ..domain.models import PrincipalBase, Role
from ..domain.schemas import AnchorOut, AnchorRequest, FeedEntryOut, RegistryLookupOut

router = APIRouter()


@router.post("/hashes", response_model=AnchorOut, status_code=status.HTTP_201_CREATED)
def anchor_hash(
    payload: AnchorRequest,
    authority: PrincipalBase = Depends(require_role(Role.AUTHORITY)),
    services: Services = Depends(get_services),
):
    receipt = services.registry.anchor(payload.hash)
    services.audit.record(authority.id, Role.AUTHORITY.value, "anchor_hash", receipt.hash)
    return AnchorOut(
        hash=receipt.hash,
        tx_ref=receipt.tx_ref,
        anchored_at_block=receipt.anchored_at_block,
        already_anchored=receipt.already_anchored,
    )


@router.get("/hashes/{hash_value}", response_model=RegistryLookupOut)
def lookup_hash(hash_value: str, services: Services = Depends(get_services)):
    result = services.registry.verify(hash_value)
    return RegistryLookupOut(hash=result.hash, exists=result.exists, anchored_at_block=result.anchored_at_block)


@router.get("/transactions", response_model=List[FeedEntryOut])
def recent_transactions(
    _: PrincipalBase = Depends(require_role(Role.ADMIN)),
    services: Services = Depends(get_services),
):
    return [FeedEntryOut(**vars(entry)) for entry in services.feed.snapshot()]
