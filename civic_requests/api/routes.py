"""API routes for the service request lifecycle."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from civic_requests.database import get_db
from civic_requests.models.domain import ServiceRequest
from civic_requests.models.enums import Priority, RequestStatus, Role, STAFF_ROLES
from civic_requests.services.audit_log import AuditLog
from civic_requests.services.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationFailed,
    VersionConflict,
    WorkflowError
)
from civic_requests.services.request_store import DEFAULT_SORT, SORT_FIELDS, RequestStore
from civic_requests.services.workflow import Actor, WorkflowEngine
from civic_requests.api.schemas import (
    AuditEventResponse,
    AvailableActions,
    ErrorResponse,
    HistoryPage,
    ServiceRequestCreate,
    ServiceRequestPage,
    ServiceRequestResponse,
    ServiceRequestUpdate,
    StatusAction
)

router = APIRouter()

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Citizens file their own issues; clerks file on behalf of phone and walk-in callers
CREATOR_ROLES = frozenset({Role.CITIZEN, Role.CLERK})

# INVALID_TRANSITION and VERSION_CONFLICT share 409; the code field tells them apart
REFUSAL_STATUS = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (VersionConflict, status.HTTP_409_CONFLICT),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (ValidationFailed, status.HTTP_400_BAD_REQUEST),
)

REFUSAL_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error or bad If-Match header"},
    401: {"model": ErrorResponse, "description": "No resolved actor"},
    403: {"model": ErrorResponse, "description": "Role not allowed"},
    404: {"model": ErrorResponse, "description": "Service request not found"},
    409: {"model": ErrorResponse, "description": "Invalid transition or version conflict"},
}


def http_error(request: Request, status_code: int, code: str, message: str, details: Optional[dict] = None):
    return HTTPException(
        status_code=status_code,
        detail={
            "code": code,
            "message": message,
            "details": details or {},
            "correlation_id": getattr(request.state, "correlation_id", None)
        }
    )


def refusal(request: Request, error: WorkflowError) -> HTTPException:
    """Translate a typed service failure into its HTTP form, keeping the code verbatim."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in REFUSAL_STATUS:
        if isinstance(error, error_type):
            status_code = mapped
            break
    return http_error(request, status_code, error.code, error.message, error.details)


def get_actor(
    request: Request,
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_department_id: Optional[str] = Header(None)
) -> Actor:
    """
    Resolve the calling principal from headers set by the authenticating gateway.

    Token issuance happens upstream; these values are trusted as-is.
    """
    if not x_actor_id or not x_actor_role:
        raise http_error(request, status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "Actor headers are required")
    try:
        role = Role(x_actor_role.upper())
    except ValueError:
        raise http_error(
            request, status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", f"Unknown role '{x_actor_role}'"
        )
    return Actor(actor_id=x_actor_id, role=role, department_id=x_department_id)


def expected_version(request: Request, if_match: Optional[str]) -> int:
    """Parse an If-Match header carrying a version: 3, "3" and W/"3" are all accepted."""
    if if_match is None or not if_match.strip():
        raise http_error(
            request, status.HTTP_400_BAD_REQUEST, "MISSING_IF_MATCH",
            "If-Match header is required for optimistic locking"
        )
    value = if_match.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    # int() alone would also take "1_0", "+3" and non-ASCII digits
    if not (value.isascii() and value.isdigit()):
        raise http_error(
            request, status.HTTP_400_BAD_REQUEST, "INVALID_IF_MATCH",
            "If-Match header must be a valid version number",
            {"if_match": if_match}
        )
    return int(value)


def set_etag(response: Response, service_request: ServiceRequest) -> None:
    response.headers["ETag"] = f'"{service_request.version}"'


def load_visible(request: Request, store: RequestStore, request_id: str, actor: Actor) -> ServiceRequest:
    """Load a request, refusing citizens who did not file it."""
    try:
        service_request = store.load(request_id)
    except NotFound as e:
        raise refusal(request, e)
    if actor.role == Role.CITIZEN and service_request.creator_id != actor.actor_id:
        raise http_error(
            request, status.HTTP_403_FORBIDDEN, Forbidden.code, "You can only view your own requests"
        )
    return service_request


def clamp_page(page: Optional[int], limit: Optional[int]):
    page = page if page and page > 0 else 1
    limit = limit if limit and 0 < limit <= MAX_PAGE_SIZE else DEFAULT_PAGE_SIZE
    return page, limit


# ServiceRequest endpoints
@router.post("/requests", response_model=ServiceRequestResponse, status_code=status.HTTP_201_CREATED)
def create_request(
    data: ServiceRequestCreate,
    request: Request,
    response: Response,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db)
):
    """File a new request. It starts SUBMITTED at version 0."""
    if actor.role not in CREATOR_ROLES:
        raise http_error(
            request, status.HTTP_403_FORBIDDEN, Forbidden.code,
            f"Role {actor.role.value} may not file requests",
            {"role": actor.role.value, "allowed_roles": sorted(role.value for role in CREATOR_ROLES)}
        )
    service_request = RequestStore(db).create(
        title=data.title,
        creator_id=actor.actor_id,
        description=data.description,
        category=data.category,
        priority=data.priority,
        location_text=data.location_text
    )
    set_etag(response, service_request)
    return service_request


@router.get("/requests", response_model=ServiceRequestPage)
def list_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    assignee_id: Optional[str] = None,
    department_id: Optional[str] = None,
    priority: Optional[Priority] = None,
    category: Optional[str] = None,
    text: Optional[str] = None,
    creator_id: Optional[str] = None,
    sort: str = Query(DEFAULT_SORT, description="field:asc|desc over " + ", ".join(SORT_FIELDS)),
    page: Optional[int] = None,
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db)
):
    """
    List requests matching every given filter, newest first by default.

    Citizens only see their own; the creator_id filter is overridden for them.
    """
    page, limit = clamp_page(page, limit)
    if actor.role == Role.CITIZEN:
        creator_id = actor.actor_id
    items, total = RequestStore(db).list_requests(
        status=status_filter,
        creator_id=creator_id,
        assignee_id=assignee_id,
        department_id=department_id,
        priority=priority,
        category=category,
        text=text,
        sort=sort,
        page=page,
        limit=limit
    )
    return ServiceRequestPage(
        items=[ServiceRequestResponse.model_validate(item) for item in items],
        page=page,
        limit=limit,
        total=total,
        has_next=page * limit < total
    )


@router.get("/requests/{request_id}", response_model=ServiceRequestResponse, responses=REFUSAL_RESPONSES)
def get_request(
    request_id: str,
    request: Request,
    response: Response,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db)
):
    service_request = load_visible(request, RequestStore(db), request_id, actor)
    set_etag(response, service_request)
    return service_request


@router.patch("/requests/{request_id}", response_model=ServiceRequestResponse, responses=REFUSAL_RESPONSES)
def update_request(
    request_id: str,
    data: ServiceRequestUpdate,
    request: Request,
    response: Response,
    if_match: Optional[str] = Header(None),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db)
):
    """
    Edit descriptive fields under the same If-Match contract as transitions.

    This is not a state transition: status never changes here and no audit
    event is written.
    """
    version = expected_version(request, if_match)
    changes = data.model_dump(exclude_unset=True)
    # title and priority are NOT NULL columns
    changes = {
        field: value for field, value in changes.items()
        if value is not None or field not in ("title", "priority")
    }
    if not changes:
        raise http_error(request, status.HTTP_400_BAD_REQUEST, ValidationFailed.code, "No fields to update")

    store = RequestStore(db)
    service_request = load_visible(request, store, request_id, actor)
    # Citizens edit their own request only until staff pick it up
    if actor.role not in STAFF_ROLES and service_request.status != RequestStatus.SUBMITTED:
        raise http_error(
            request, status.HTTP_403_FORBIDDEN, Forbidden.code,
            "Requests can only be edited by their creator while SUBMITTED"
        )

    def apply_changes(target: ServiceRequest) -> None:
        for field, value in changes.items():
            setattr(target, field, value)
        target.updated_at = datetime.utcnow()

    try:
        updated = store.commit(request_id, version, apply_changes)
    except WorkflowError as e:
        raise refusal(request, e)
    set_etag(response, updated)
    return updated


# Workflow endpoints
@router.post("/requests/{request_id}/status", response_model=ServiceRequestResponse, responses=REFUSAL_RESPONSES)
def change_status(
    request_id: str,
    data: StatusAction,
    request: Request,
    response: Response,
    if_match: Optional[str] = Header(None),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db)
):
    """
    Drive the request through one workflow action.

    WILL REFUSE with:
    - 404 NOT_FOUND if the request does not exist
    - 409 INVALID_TRANSITION if the action is not legal from the current status
    - 403 FORBIDDEN if the actor's role may not invoke the action
    - 409 VERSION_CONFLICT if If-Match is stale (re-fetch and retry)
    - 400 VALIDATION_ERROR e.g. reject without a reason
    """
    version = expected_version(request, if_match)
    engine = WorkflowEngine(db, listeners=getattr(request.app.state, "audit_listeners", None))
    try:
        updated = engine.apply(
            request_id,
            data.action,
            actor,
            version,
            reason=data.reason,
            assignee_id=data.assignee_id,
            department_id=data.department_id
        )
    except WorkflowError as e:
        raise refusal(request, e)
    set_etag(response, updated)
    return updated


@router.get("/requests/{request_id}/actions", response_model=AvailableActions, responses=REFUSAL_RESPONSES)
def list_available_actions(
    request_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db)
):
    """Actions the caller may invoke on the request in its current status."""
    service_request = load_visible(request, RequestStore(db), request_id, actor)
    actions = WorkflowEngine(db).available_actions(request_id, actor)
    return AvailableActions(
        request_id=service_request.id,
        status=service_request.status,
        version=service_request.version,
        actions=actions
    )


@router.get("/requests/{request_id}/history", response_model=HistoryPage, responses=REFUSAL_RESPONSES)
def get_history(
    request_id: str,
    request: Request,
    after: int = Query(0, ge=0),
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db)
):
    """Ordered transition history. Page forward by passing next_after as ``after``."""
    load_visible(request, RequestStore(db), request_id, actor)
    _, limit = clamp_page(1, limit)
    events = AuditLog(db).list_for(request_id, after_sequence=after, limit=limit)
    next_after = events[-1].sequence_number if len(events) == limit else None
    return HistoryPage(
        items=[AuditEventResponse.model_validate(event) for event in events],
        next_after=next_after
    )
