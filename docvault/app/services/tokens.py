"""Signed session tokens with version-counter revocation.

A token carries the principal's ``token_version`` at issue time. It stays
valid only while that number equals the stored counter, so bumping the
counter revokes every outstanding token for the principal at once. There is
no deny-list.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
import structlog

from ..domain.models import PrincipalBase, Role
from ..errors import Expired, Malformed, Revoked, RoleMismatch
from .directory import DirectoryRouter

log = structlog.get_logger(__name__)

REQUIRED_CLAIMS = ("sub", "role", "ver", "iat", "exp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    def __init__(
        self,
        directory: DirectoryRouter,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(days=7),
        role_ttls: Optional[dict[Role, timedelta]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.directory = directory
        self._secret = secret
        self._algorithm = algorithm
        self.ttl = ttl
        self.role_ttls = role_ttls or {}
        self._clock = clock

    def issue(self, principal: PrincipalBase) -> str:
        now = self._clock()
        ttl = self.role_ttls.get(principal.role, self.ttl)
        claims = {
            "sub": principal.id,
            "role": principal.role.value,
            "ver": principal.token_version,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> dict:
        """Check signature, shape and expiry; no directory lookup."""
        if not token or not isinstance(token, str):
            raise Malformed("token is empty")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": list(REQUIRED_CLAIMS), "verify_exp": False},
            )
        except jwt.InvalidTokenError as exc:
            raise Malformed("token signature or structure is invalid") from exc

        if not isinstance(claims.get("sub"), str) or not isinstance(claims.get("ver"), int):
            raise Malformed("token claims have unexpected types")
        try:
            Role(claims["role"])
        except ValueError as exc:
            raise Malformed("token role is unknown") from exc
        if not isinstance(claims["exp"], (int, float)):
            raise Malformed("token expiry is not numeric")
        if claims["exp"] <= self._clock().timestamp():
            raise Expired("token has expired")
        return claims

    def validate(self, token: str, required_role: Role | str | None = None) -> PrincipalBase:
        """Return the principal a token speaks for, or raise an AuthError.

        Read-only: safe to call concurrently from any number of workers.
        """
        claims = self.decode(token)
        role = Role(claims["role"])
        if required_role is not None and role is not Role(required_role):
            raise RoleMismatch(f"{Role(required_role).value} role required")

        principal = self.directory.resolve_store(role).get(claims["sub"])
        if principal is None or principal.token_version != claims["ver"]:
            raise Revoked("token has been invalidated")
        return principal

    def revoke_all(self, principal: PrincipalBase) -> int:
        """Invalidate every token issued so far for this principal."""
        version = self.directory.resolve_store(principal.role).bump_token_version(principal.id)
        log.info("sessions_revoked", role=principal.role.value, principal_id=principal.id)
        return version


def bearer_token(header: Optional[str]) -> str:
    """Pull the token out of an Authorization header value."""
    if not header:
        raise Malformed("no token provided")
    value = header.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    if not value:
        raise Malformed("no token provided")
    return value
