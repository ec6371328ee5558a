"""Authentication routes: one login/logout surface per role."""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status

from ..deps import Services, get_services
from ..domain.models import PrincipalBase, PrincipalRead, Role
from ..domain.schemas import (
    LoginRequest,
    LogoutOut,
    MessageOut,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    SessionOut,
)
from ..services.tokens import bearer_token

router = APIRouter()


def _principal(role: Role, authorization: Optional[str], services: Services) -> PrincipalBase:
    return services.tokens.validate(bearer_token(authorization), required_role=role)


def _read(principal: PrincipalBase) -> PrincipalRead:
    return PrincipalRead.model_validate(principal)


@router.post("/users/register", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, services: Services = Depends(get_services)):
    user, _ = services.accounts.register_user(
        payload.id_number,
        payload.password,
        payload.email,
        full_name=payload.full_name,
        phone_number=payload.phone_number,
    )
    services.audit.record(user.id, Role.USER.value, "register", "users")
    return SessionOut(token=services.tokens.issue(user), principal=_read(user))


@router.get("/users/verify-email", response_model=MessageOut)
def verify_email(token: str = Query(...), services: Services = Depends(get_services)):
    services.accounts.verify_email(token)
    return MessageOut(message="Email verified successfully")


@router.post("/{role}/login", response_model=SessionOut)
def login(role: Role, payload: LoginRequest, services: Services = Depends(get_services)):
    token, principal = services.accounts.login(role, payload.login, payload.password)
    services.audit.record(principal.id, role.value, "login", f"{role.value}s")
    return SessionOut(token=token, principal=_read(principal))


@router.post("/{role}/logout", response_model=LogoutOut)
def logout(
    role: Role,
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    principal = _principal(role, authorization, services)
    version = services.accounts.logout(principal)
    services.audit.record(principal.id, role.value, "logout", f"{role.value}s")
    return LogoutOut(token_version=version)


@router.get("/{role}/me", response_model=PrincipalRead)
def me(
    role: Role,
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    return _read(_principal(role, authorization, services))


@router.post("/{role}/password", response_model=MessageOut)
def change_password(
    role: Role,
    payload: PasswordChangeRequest,
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    principal = _principal(role, authorization, services)
    services.accounts.change_password(principal, payload.current_password, payload.new_password)
    services.audit.record(principal.id, role.value, "change_password", f"{role.value}s")
    return MessageOut(message="Password changed; please sign in again")


@router.post("/users/password-reset", response_model=MessageOut)
def request_reset(payload: PasswordResetRequest, services: Services = Depends(get_services)):
    services.accounts.request_password_reset(Role.USER, payload.email)
    return MessageOut(message="If the address is registered, a reset code has been sent")


@router.post("/users/password-reset/confirm", response_model=MessageOut)
def confirm_reset(payload: PasswordResetConfirm, services: Services = Depends(get_services)):
    principal = services.accounts.confirm_password_reset(Role.USER, payload.email, payload.code, payload.new_password)
    services.audit.record(principal.id, Role.USER.value, "reset_password", "users")
    return MessageOut(message="Password reset; please sign in again")


@router.delete("/users/me", response_model=MessageOut)
def delete_account(authorization: Optional[str] = Header(None), services: Services = Depends(get_services)):
    principal = _principal(Role.USER, authorization, services)
    services.accounts.delete(principal)
    services.audit.record(principal.id, Role.USER.value, "delete_account", "users")
    return MessageOut(message="Account deleted")
