"""Database engine and session utilities."""
from contextlib import contextmanager
import time
from typing import Iterator, Optional, Sequence

import structlog
from sqlalchemy import Table, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session

log = structlog.get_logger(__name__)


def make_engine(url: str) -> Engine:
    """Build an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, future=True, **kwargs)
    return create_engine(url, echo=False, future=True, pool_pre_ping=True)


def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        class_=Session,
    )


def init_tables(
    engine: Engine,
    tables: Optional[Sequence[Table]] = None,
    attempts: int = 30,
    delay: float = 1.0,
) -> None:
    """Create tables if they do not exist.

    Retries while the database service comes up (docker compose startup).
    """
    last_err: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            SQLModel.metadata.create_all(engine, tables=tables)
            return
        except OperationalError as exc:  # pragma: no cover
            last_err = exc
            log.info("waiting_for_database", attempt=attempt, of=attempts, error=str(exc))
            time.sleep(delay)
    if last_err:
        raise last_err


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
