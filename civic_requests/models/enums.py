"""Enums for the request lifecycle - the only legal values for statuses, roles and actions."""
from enum import Enum


class RequestStatus(str, Enum):
    """The seven statuses a ServiceRequest can be in. No other statuses are allowed."""
    SUBMITTED = "SUBMITTED"
    TRIAGED = "TRIAGED"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_ON_CITIZEN = "WAITING_ON_CITIZEN"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset({RequestStatus.CLOSED, RequestStatus.REJECTED})


class Role(str, Enum):
    """Roles an authenticated principal can hold."""
    CITIZEN = "CITIZEN"
    CLERK = "CLERK"
    FIELD_AGENT = "FIELD_AGENT"
    SUPERVISOR = "SUPERVISOR"
    ADMIN = "ADMIN"


STAFF_ROLES = frozenset({Role.CLERK, Role.FIELD_AGENT, Role.SUPERVISOR, Role.ADMIN})


class Action(str, Enum):
    """Named workflow actions. Which ones apply depends on the current status."""
    TRIAGE = "triage"
    START = "start"
    REQUEST_MORE_INFO = "request_more_info"
    WAIT_FOR_CITIZEN = "wait_for_citizen"
    RESUME_PROGRESS = "resume_progress"
    RESOLVE = "resolve"
    CLOSE = "close"
    CLOSE_NO_RESPONSE = "close_no_response"
    REJECT = "reject"
    REOPEN = "reopen"


class Priority(str, Enum):
    """Citizen/staff supplied urgency. Informational only, no workflow effect."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"
