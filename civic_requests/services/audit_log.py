"""Append-only, per-request ordered history of transitions."""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from civic_requests.models.audit import AuditEvent
from civic_requests.models.domain import ServiceRequest
from civic_requests.models.enums import Action, RequestStatus, Role


@dataclass(frozen=True)
class AuditRecord:
    """Detached copy of a committed AuditEvent, safe to hand past the session."""
    request_id: str
    sequence_number: int
    action: Action
    from_status: RequestStatus
    to_status: RequestStatus
    actor_id: str
    actor_role: Role
    reason: Optional[str]
    created_at: datetime

    @classmethod
    def of(cls, event: AuditEvent) -> "AuditRecord":
        return cls(
            request_id=event.request_id,
            sequence_number=event.sequence_number,
            action=event.action,
            from_status=event.from_status,
            to_status=event.to_status,
            actor_id=event.actor_id,
            actor_role=event.actor_role,
            reason=event.reason,
            created_at=event.created_at
        )


class AuditLog:
    """
    Stages and reads audit events.

    append() only adds to the session; the caller's transaction decides
    whether the event lands, so status and history cannot diverge.
    """

    def __init__(self, db: Session):
        self.db = db

    def next_sequence(self, request_id: str) -> int:
        current = self.db.query(func.max(AuditEvent.sequence_number)).filter(
            AuditEvent.request_id == request_id
        ).scalar()
        return (current or 0) + 1

    def append(
        self,
        request: ServiceRequest,
        action: Action,
        from_status: RequestStatus,
        to_status: RequestStatus,
        actor_id: str,
        actor_role: Role,
        reason: Optional[str] = None
    ) -> AuditEvent:
        event = AuditEvent(
            request_id=request.id,
            sequence_number=self.next_sequence(request.id),
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            actor_role=actor_role,
            reason=reason,
            created_at=request.updated_at
        )
        self.db.add(event)
        return event

    def list_for(self, request_id: str, after_sequence: int = 0, limit: int = 20) -> List[AuditEvent]:
        """
        Return up to ``limit`` events with sequence_number > ``after_sequence``.

        Restartable: pass the last sequence number seen to continue.
        """
        return self.db.query(AuditEvent).filter(
            AuditEvent.request_id == request_id,
            AuditEvent.sequence_number > after_sequence
        ).order_by(AuditEvent.sequence_number).limit(limit).all()
