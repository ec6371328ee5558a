"""Account lifecycle: registration, login, logout and credential changes.

Every credential change and every logout bumps ``token_version``; that is the
only way sessions are ended.
"""
from __future__ import annotations

import hmac
import hashlib
import re
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

import bcrypt
import structlog

from ..domain.models import AccountStatus, PrincipalBase, Role, UserAccount, ACCOUNT_MODELS
from ..errors import ConflictError, FormatError, InvalidCredentials, NotFoundError
from ..infra.notify import NotificationSender
from .directory import DirectoryRouter
from .tokens import TokenService

log = structlog.get_logger(__name__)

ID_NUMBER_PATTERN = re.compile(r"^\d{9}[VX]$|^\d{12}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+\d{8,15}$")
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def check_password(password: str, credential_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), credential_hash.encode("ascii"))
    except ValueError:
        return False


def _digest(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class AccountService:
    def __init__(
        self,
        directory: DirectoryRouter,
        tokens: TokenService,
        notifier: Optional[NotificationSender] = None,
        verify_url: str = "http://localhost:8000/auth/users/verify-email",
        bcrypt_rounds: int = 12,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.directory = directory
        self.tokens = tokens
        self.notifier = notifier
        self.verify_url = verify_url
        self.bcrypt_rounds = bcrypt_rounds
        self._clock = clock

    # -- creation ------------------------------------------------------------

    def _check_password_policy(self, password: str) -> None:
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise FormatError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")

    def _notify(self, address: Optional[str], kind: str, **params) -> bool:
        if not address or self.notifier is None:
            return False
        sent = self.notifier.send(address, kind, params)
        if not sent:
            log.warning("notification_failed", kind=kind)
        return sent

    def create_principal(
        self,
        role: Role | str,
        login: str,
        password: str,
        email: Optional[str] = None,
        **extra,
    ) -> PrincipalBase:
        role = Role(role)
        login = login.strip()
        if not login:
            raise FormatError("login must not be empty")
        if email is not None and not EMAIL_PATTERN.match(email):
            raise FormatError("invalid email format")
        self._check_password_policy(password)

        store = self.directory.resolve_store(role)
        if store.find_one("login", login) is not None:
            raise ConflictError(f"{role.value} {login!r} already exists")

        principal = ACCOUNT_MODELS[role](
            login=login,
            email=email.lower() if email else None,
            credential_hash=hash_password(password, self.bcrypt_rounds),
            status=AccountStatus.ACTIVE if role is not Role.USER else AccountStatus.PENDING,
            **extra,
        )
        principal = store.put(principal)
        log.info("principal_created", role=role.value, principal_id=principal.id)
        if role is Role.AUTHORITY:
            self._notify(
                principal.email,
                "welcome_authority",
                login=principal.login,
                organization=extra.get("organization") or "your organization",
            )
        return principal

    def register_user(
        self,
        id_number: str,
        password: str,
        email: str,
        full_name: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> Tuple[UserAccount, str]:
        """Create a pending user and send the email-verification link."""
        id_number = (id_number or "").strip().upper()
        if not ID_NUMBER_PATTERN.match(id_number):
            raise FormatError("invalid ID number format; use 9 digits + V/X or 12 digits")
        if phone_number is not None and not PHONE_PATTERN.match(phone_number):
            raise FormatError("invalid phone number; include the country code")

        verification_token = secrets.token_hex(20)
        user = self.create_principal(
            Role.USER,
            id_number,
            password,
            email=email,
            full_name=full_name,
            phone_number=phone_number,
            verification_token=verification_token,
            verification_expires_at=self._clock() + timedelta(hours=1),
        )
        self._notify(user.email, "email_verification", link=f"{self.verify_url}?token={verification_token}")
        return user, verification_token

    def verify_email(self, token: str) -> PrincipalBase:
        store = self.directory.resolve_store(Role.USER)
        user = store.find_one("verification_token", token) if token else None
        if user is None or not user.verification_expires_at or user.verification_expires_at < self._clock():
            raise FormatError("invalid or expired verification token")
        user.email_verified = True
        user.status = AccountStatus.ACTIVE
        user.verification_token = None
        user.verification_expires_at = None
        return store.put(user)

    # -- sessions ------------------------------------------------------------

    def login(self, role: Role | str, login: str, password: str) -> Tuple[str, PrincipalBase]:
        role = Role(role)
        if role is Role.USER:
            login = (login or "").strip().upper()
        principal = self.directory.resolve_store(role).find_one("login", (login or "").strip())
        # same answer for unknown login and wrong password
        if principal is None or not check_password(password or "", principal.credential_hash):
            log.info("login_failed", role=role.value)
            raise InvalidCredentials("invalid login or password")
        if principal.status is AccountStatus.SUSPENDED:
            raise InvalidCredentials("account is suspended")
        log.info("login_succeeded", role=role.value, principal_id=principal.id)
        return self.tokens.issue(principal), principal

    def logout(self, principal: PrincipalBase) -> int:
        return self.tokens.revoke_all(principal)

    def change_password(self, principal: PrincipalBase, current: str, new: str) -> PrincipalBase:
        if not check_password(current or "", principal.credential_hash):
            raise InvalidCredentials("current password is incorrect")
        return self._set_password(principal, new)

    def _set_password(self, principal: PrincipalBase, new: str) -> PrincipalBase:
        self._check_password_policy(new)
        store = self.directory.resolve_store(principal.role)
        fresh = store.get(principal.id)
        if fresh is None:
            raise NotFoundError("account no longer exists")
        fresh.credential_hash = hash_password(new, self.bcrypt_rounds)
        fresh.reset_code_hash = None
        fresh.reset_expires_at = None
        store.put(fresh)
        store.bump_token_version(fresh.id)
        log.info("password_changed", role=principal.role.value, principal_id=principal.id)
        return store.get(fresh.id)

    # -- password reset --------------------------------------------------------

    def request_password_reset(self, role: Role | str, email: str, minutes: int = 15) -> bool:
        """Email a six-digit reset code. Unknown addresses look the same to callers."""
        store = self.directory.resolve_store(role)
        principal = store.find_one("email", (email or "").strip().lower())
        if principal is None:
            return True
        code = f"{secrets.randbelow(10**6):06d}"
        principal.reset_code_hash = _digest(code)
        principal.reset_expires_at = self._clock() + timedelta(minutes=minutes)
        store.put(principal)
        self._notify(principal.email, "password_reset", code=code, minutes=minutes)
        return True

    def confirm_password_reset(self, role: Role | str, email: str, code: str, new_password: str) -> PrincipalBase:
        store = self.directory.resolve_store(role)
        principal = store.find_one("email", (email or "").strip().lower())
        if (
            principal is None
            or not principal.reset_code_hash
            or not principal.reset_expires_at
            or principal.reset_expires_at < self._clock()
            or not hmac.compare_digest(principal.reset_code_hash, _digest(code or ""))
        ):
            raise InvalidCredentials("invalid or expired reset code")
        return self._set_password(principal, new_password)

    def delete(self, principal: PrincipalBase) -> bool:
        """Remove the account; its outstanding tokens then fail as revoked."""
        removed = self.directory.resolve_store(principal.role).delete(principal.id)
        if removed:
            log.info("principal_deleted", role=principal.role.value, principal_id=principal.id)
        return removed
