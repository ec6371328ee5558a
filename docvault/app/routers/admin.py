"""Administrator routes: authority onboarding and the audit trail."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..deps import Services, get_services, require_role
from ..domain.models import AuditRecordRead, PrincipalBase, PrincipalRead, Role
from ..domain.schemas import AuthorityCreate

router = APIRouter()


@router.post("/admin/authorities", response_model=PrincipalRead, status_code=status.HTTP_201_CREATED)
def create_authority(
    payload: AuthorityCreate,
    admin: PrincipalBase = Depends(require_role(Role.ADMIN)),
    services: Services = Depends(get_services),
):
    authority = services.accounts.create_principal(
        Role.AUTHORITY,
        payload.login,
        payload.password,
        email=payload.email,
        organization=payload.organization,
    )
    services.audit.record(admin.id, Role.ADMIN.value, "create_authority", authority.id)
    return PrincipalRead.model_validate(authority)


@router.get("/audit/logs", response_model=List[AuditRecordRead])
def audit_logs(
    actor_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    _: PrincipalBase = Depends(require_role(Role.ADMIN)),
    services: Services = Depends(get_services),
):
    return services.audit.list(actor_id=actor_id, action=action, limit=limit)
