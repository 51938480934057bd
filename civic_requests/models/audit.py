"""
Audit event model - the canonical history of a service request.

One row per accepted transition. History views read it, notification
listeners subscribe to it; the workflow engine is the only writer.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum
from civic_requests.database import Base
from civic_requests.models.enums import Action, RequestStatus, Role


class AuditEvent(Base):
    """
    Immutable record of one transition.

    Invariants:
    - Once written, never edited or deleted
    - sequence_number is gapless and strictly increasing per request
    - Written in the same transaction as the status change it describes
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "sequence_number", name="uq_audit_events_request_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    request_id = Column(String(32), ForeignKey("service_requests.id"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)

    action = Column(SQLEnum(Action), nullable=False)
    from_status = Column(SQLEnum(RequestStatus), nullable=False)
    to_status = Column(SQLEnum(RequestStatus), nullable=False)
    actor_id = Column(String, nullable=False)
    actor_role = Column(SQLEnum(Role), nullable=False)
    reason = Column(String, nullable=True)  # Free text, mandatory for reject

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
