"""Role-scoped credential directory.

Each role owns a repository bound to its own partition (engine + table).
The role -> partition map is fixed at startup; a lookup for one role can
never reach another role's accounts.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Type

import structlog
from sqlalchemy import select as sa_select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlmodel import select

from ..domain.models import (
    ACCOUNT_MODELS,
    AdminAccount,
    AuthorityAccount,
    PrincipalBase,
    Role,
    UserAccount,
)
from ..errors import ConfigurationError, FormatError, NotFoundError
from ..infra.db import init_tables, make_engine, session_factory, session_scope

log = structlog.get_logger(__name__)


class PrincipalRepository:
    """Common CRUD over one role's account table."""

    model: Type[PrincipalBase] = PrincipalBase
    role: Role

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = session_factory(engine)

    def get(self, principal_id: str) -> Optional[PrincipalBase]:
        with session_scope(self._sessions) as session:
            return session.get(self.model, principal_id)

    def put(self, principal: PrincipalBase) -> PrincipalBase:
        if not isinstance(principal, self.model):
            raise FormatError(f"{type(principal).__name__} does not belong in the {self.role.value} store")
        with session_scope(self._sessions) as session:
            merged = session.merge(principal)
            session.flush()
            session.refresh(merged)
            return merged

    def find_by_field(self, field: str, value: Any) -> list[PrincipalBase]:
        column = self.model.__table__.columns.get(field)
        if column is None:
            raise FormatError(f"unknown field {field!r}")
        with session_scope(self._sessions) as session:
            stmt = select(self.model).where(column == value)
            return list(session.exec(stmt).all())

    def find_one(self, field: str, value: Any) -> Optional[PrincipalBase]:
        found = self.find_by_field(field, value)
        return found[0] if found else None

    def bump_token_version(self, principal_id: str) -> int:
        """Atomically increment the revocation counter; returns the stored value."""
        table = self.model.__table__
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(table)
                .where(table.c.id == principal_id)
                .values(token_version=table.c.token_version + 1)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"no {self.role.value} account {principal_id}")
            version = session.execute(
                sa_select(table.c.token_version).where(table.c.id == principal_id)
            ).scalar_one()
        log.info("token_version_bumped", role=self.role.value, principal_id=principal_id)
        return version

    def delete(self, principal_id: str) -> bool:
        with session_scope(self._sessions) as session:
            principal = session.get(self.model, principal_id)
            if principal is None:
                return False
            session.delete(principal)
        return True


class UserRepository(PrincipalRepository):
    model = UserAccount
    role = Role.USER


class AdminRepository(PrincipalRepository):
    model = AdminAccount
    role = Role.ADMIN


class AuthorityRepository(PrincipalRepository):
    model = AuthorityAccount
    role = Role.AUTHORITY


REPOSITORIES: Dict[Role, Type[PrincipalRepository]] = {
    Role.USER: UserRepository,
    Role.ADMIN: AdminRepository,
    Role.AUTHORITY: AuthorityRepository,
}


def _as_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise ConfigurationError(f"no credential store for role {role!r}") from exc


class DirectoryRouter:
    """Maps each role to its own repository."""

    def __init__(self, stores: Mapping[Role, PrincipalRepository]) -> None:
        missing = [role.value for role in Role if role not in stores]
        if missing:
            raise ConfigurationError(f"credential stores missing for roles: {', '.join(missing)}")
        for role, store in stores.items():
            if store.role is not role:
                raise ConfigurationError(f"store for {role.value} is scoped to {store.role.value}")
        self._stores = dict(stores)

    @classmethod
    def from_partitions(cls, partitions: Mapping[str, str], create_tables: bool = True) -> "DirectoryRouter":
        """Build every role's store up front; any failure aborts startup."""
        engines: Dict[str, Engine] = {}
        stores: Dict[Role, PrincipalRepository] = {}
        for role in Role:
            url = partitions.get(role.value)
            if not url:
                raise ConfigurationError(f"no partition configured for role {role.value!r}")
            try:
                engine = engines.get(url) or make_engine(url)
                if create_tables:
                    init_tables(engine, [ACCOUNT_MODELS[role].__table__], attempts=1)
            except (ArgumentError, SQLAlchemyError, ImportError) as exc:
                raise ConfigurationError(f"cannot open {role.value} partition: {exc}") from exc
            engines[url] = engine
            stores[role] = REPOSITORIES[role](engine)
        log.info("directory_ready", partitions=len(engines))
        return cls(stores)

    def resolve_store(self, role: Role | str) -> PrincipalRepository:
        return self._stores[_as_role(role)]

    def dispose(self) -> None:
        for engine in {store.engine for store in self._stores.values()}:
            engine.dispose()
