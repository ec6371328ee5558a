"""Audit trail for authentication and verification decisions."""
from typing import List, Optional

from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from ..domain.models import AuditRecord
from ..infra.db import session_scope


class AuditTrail:
    def __init__(self, sessions: sessionmaker) -> None:
        self.sessions = sessions

    def record(
        self,
        actor_id: str,
        role: str,
        action: str,
        resource: str,
        allowed: bool = True,
        detail: Optional[str] = None,
    ) -> AuditRecord:
        entry = AuditRecord(
            actor_id=actor_id,
            role=role,
            action=action,
            resource=resource,
            allowed=allowed,
            detail=detail,
        )
        with session_scope(self.sessions) as session:
            session.add(entry)
            session.flush()
            session.refresh(entry)
        return entry

    def list(
        self,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        stmt = select(AuditRecord).order_by(AuditRecord.created_at.desc()).limit(limit)
        if actor_id:
            stmt = stmt.where(AuditRecord.actor_id == actor_id)
        if action:
            stmt = stmt.where(AuditRecord.action == action)
        with session_scope(self.sessions) as session:
            return list(session.exec(stmt).all())
