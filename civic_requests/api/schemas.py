"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from civic_requests.models.enums import Action, Priority, RequestStatus, Role


# ServiceRequest schemas
class ServiceRequestCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    category: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    location_text: Optional[str] = None


class ServiceRequestUpdate(BaseModel):
    """Plain field edits. Status is deliberately absent: it only moves through actions."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    category: Optional[str] = None
    priority: Optional[Priority] = None
    location_text: Optional[str] = None


class ServiceRequestResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    category: Optional[str]
    priority: Priority
    location_text: Optional[str]
    creator_id: str
    status: RequestStatus
    version: int
    assignee_id: Optional[str]
    department_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ServiceRequestPage(BaseModel):
    items: List[ServiceRequestResponse]
    page: int
    limit: int
    total: int
    has_next: bool


# Status transition schemas
class StatusAction(BaseModel):
    # Plain string: unknown actions are an INVALID_TRANSITION, not a body error
    action: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=2000)
    assignee_id: Optional[str] = None
    department_id: Optional[str] = None


class AvailableActions(BaseModel):
    request_id: str
    status: RequestStatus
    version: int
    actions: List[Action]


# Audit schemas
class AuditEventResponse(BaseModel):
    request_id: str
    sequence_number: int
    action: Action
    from_status: RequestStatus
    to_status: RequestStatus
    actor_id: str
    actor_role: Role
    reason: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HistoryPage(BaseModel):
    """One page of a request's history. Pass next_after back as ``after`` to continue."""
    items: List[AuditEventResponse]
    next_after: Optional[int] = None


# Error response
class ErrorDetail(BaseModel):
    """Body of every refusal, nested under ``detail``."""
    code: str
    message: str
    details: Dict[str, Any] = {}
    correlation_id: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: ErrorDetail
