"""Service wiring and FastAPI dependencies."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Union

import structlog
from fastapi import Depends, Header, Request
from sqlalchemy.orm import sessionmaker

from .config import ROLES, Settings
from .domain.models import AuditRecord, PrincipalBase, Role
from .domain.sign import LedgerWallet
from .errors import RoleMismatch
from .infra.db import init_tables, make_engine, session_factory
from .infra.ledger import HttpLedgerGateway, InMemoryLedger, LedgerOracle
from .infra.notify import NotificationSender, OutboxSender, QueuedSender
from .services.accounts import AccountService
from .services.audit import AuditTrail
from .services.directory import DirectoryRouter
from .services.feed import TransactionFeed
from .services.registry import RegistryClient
from .services.tokens import TokenService, bearer_token
from .services.verification import PasskeyCache

log = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    directory: DirectoryRouter
    tokens: TokenService
    accounts: AccountService
    registry: RegistryClient
    ledger: Union[LedgerOracle, InMemoryLedger, HttpLedgerGateway]
    feed: TransactionFeed
    audit: AuditTrail
    notifier: NotificationSender
    passkeys: PasskeyCache

    @property
    def kdf(self) -> dict:
        return {"salt": self.settings.kdf_salt, "iterations": self.settings.kdf_iterations}

    def close(self) -> None:
        if isinstance(self.ledger, HttpLedgerGateway):
            self.ledger.close()
        self.directory.dispose()


def build_services(
    settings: Settings,
    notifier: Optional[NotificationSender] = None,
    bcrypt_rounds: int = 12,
) -> Services:
    """Construct every collaborator up front; misconfiguration aborts startup."""
    directory = DirectoryRouter.from_partitions({role: settings.partition_for(role) for role in ROLES})

    audit_engine = make_engine(settings.database_url)
    init_tables(audit_engine, [AuditRecord.__table__])
    audit_sessions: sessionmaker = session_factory(audit_engine)

    tokens = TokenService(
        directory,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(seconds=settings.jwt_ttl_seconds),
        role_ttls={Role.ADMIN: timedelta(seconds=settings.admin_jwt_ttl_seconds)},
    )

    if settings.wallet_private_key_hex:
        wallet = LedgerWallet.from_hex(settings.wallet_private_key_hex)
    else:
        wallet = LedgerWallet.generate()
        log.warning("ephemeral_wallet", address=wallet.address)

    ledger: Union[InMemoryLedger, HttpLedgerGateway]
    if settings.ledger_url:
        ledger = HttpLedgerGateway(settings.ledger_url)
    else:
        ledger = InMemoryLedger(finality_depth=settings.ledger_finality_depth, fee=settings.ledger_store_fee)
        ledger.register_account(wallet.public_bytes, balance=settings.wallet_initial_balance)
        log.info("in_memory_ledger", finality_depth=settings.ledger_finality_depth)

    feed = TransactionFeed(settings.feed_capacity)
    registry = RegistryClient(
        ledger,
        wallet,
        feed=feed,
        store_timeout=settings.ledger_store_timeout,
        poll_interval=settings.ledger_poll_interval,
    )

    if notifier is None:
        notifier = QueuedSender() if settings.is_production else OutboxSender()

    accounts = AccountService(directory, tokens, notifier, bcrypt_rounds=bcrypt_rounds)
    return Services(
        settings=settings,
        directory=directory,
        tokens=tokens,
        accounts=accounts,
        registry=registry,
        ledger=ledger,
        feed=feed,
        audit=AuditTrail(audit_sessions),
        notifier=notifier,
        passkeys=PasskeyCache(),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_role(role: Role) -> Callable[..., PrincipalBase]:
    """Dependency that admits only valid, unrevoked tokens of ``role``."""

    def _dependency(
        request: Request,
        authorization: Optional[str] = Header(None),
        services: Services = Depends(get_services),
    ) -> PrincipalBase:
        token = bearer_token(authorization)
        try:
            return services.tokens.validate(token, required_role=role)
        except RoleMismatch as exc:
            claims = services.tokens.decode(token)
            services.audit.record(
                actor_id=claims["sub"],
                role=claims["role"],
                action=f"require_{role.value}",
                resource=request.url.path,
                allowed=False,
                detail=exc.code,
            )
            raise

    return _dependency
