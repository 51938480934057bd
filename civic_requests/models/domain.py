"""Domain model - the persisted service request record."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Enum as SQLEnum
from civic_requests.database import Base
from civic_requests.models.enums import RequestStatus, Priority


def _new_request_id() -> str:
    return uuid.uuid4().hex


def _next_version(current):
    # First INSERT stores 0, every UPDATE after that stores current + 1
    return 0 if current is None else current + 1


class ServiceRequest(Base):
    """
    A citizen-filed issue moving through the lifecycle:
    SUBMITTED → TRIAGED → IN_PROGRESS ⇄ WAITING_ON_CITIZEN → RESOLVED → CLOSED, or REJECTED.

    Invariants enforced here:
    - version is the mapper's version counter, so every UPDATE is
      ``WHERE id = ? AND version = ?`` and a lost race raises StaleDataError
    - Rows are never deleted; termination is a status value
    - status is only written by the workflow engine (handled in service layer)
    """
    __tablename__ = "service_requests"

    id = Column(String(32), primary_key=True, default=_new_request_id)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    category = Column(String, nullable=True)  # e.g. "pothole", "street_lighting"
    priority = Column(SQLEnum(Priority), nullable=False, default=Priority.MEDIUM)
    location_text = Column(String, nullable=True)

    creator_id = Column(String, nullable=False, index=True)  # Never mutated
    status = Column(SQLEnum(RequestStatus), nullable=False, default=RequestStatus.SUBMITTED, index=True)
    version = Column(Integer, nullable=False)

    # Set by assigning transitions (triage, start)
    assignee_id = Column(String, nullable=True)
    department_id = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    closed_at = Column(DateTime, nullable=True)  # Only set by terminal transitions

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": _next_version,
    }
