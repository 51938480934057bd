"""
Request state store - the only path that writes a ServiceRequest row.

Optimistic concurrency lives here. The ServiceRequest mapper declares
``version`` as its version counter, so the UPDATE emitted on flush is a
compare-and-swap on ``(id, version)``. A writer whose snapshot went stale
between load and commit matches zero rows and gets VersionConflict; it never
overwrites the winner.
"""
import logging
from typing import Callable, List, Optional, Tuple
from sqlalchemy import case, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from civic_requests.models.domain import ServiceRequest
from civic_requests.models.enums import Priority, RequestStatus
from civic_requests.services.errors import NotFound, VersionConflict

logger = logging.getLogger(__name__)

Mutation = Callable[[ServiceRequest], None]

DEFAULT_SORT = "created_at:desc"

# Priority sorts by urgency, not by name
_PRIORITY_RANK = case(
    *[(ServiceRequest.priority == priority, rank) for rank, priority in enumerate(Priority)]
)

SORT_FIELDS = {
    "created_at": ServiceRequest.created_at,
    "updated_at": ServiceRequest.updated_at,
    "priority": _PRIORITY_RANK,
    "status": ServiceRequest.status,
    "title": ServiceRequest.title,
}


def order_by(sort: Optional[str]):
    """Turn ``field:dir`` into an ORDER BY clause; unknown fields fall back to newest first."""
    field, _, direction = (sort or DEFAULT_SORT).partition(":")
    column = SORT_FIELDS.get(field.strip())
    if column is None:
        return ServiceRequest.created_at.desc()
    return column.asc() if direction.strip().lower() == "asc" else column.desc()


class RequestStore:
    """Load, create and compare-and-swap commit service requests."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, request_id: str) -> ServiceRequest:
        request = self.db.get(ServiceRequest, request_id)
        if request is None:
            raise NotFound(
                f"Service request {request_id} not found",
                {"request_id": request_id}
            )
        return request

    def create(
        self,
        title: str,
        creator_id: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
        location_text: Optional[str] = None
    ) -> ServiceRequest:
        """Insert a freshly submitted request (status SUBMITTED, version 0)."""
        request = ServiceRequest(
            title=title,
            description=description,
            category=category,
            priority=priority,
            location_text=location_text,
            creator_id=creator_id,
            status=RequestStatus.SUBMITTED
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)
        logger.info("Service request %s submitted by %s", request.id, creator_id)
        return request

    def commit(
        self,
        request_id: str,
        expected_version: int,
        mutation: Mutation,
        stage: Optional[Mutation] = None
    ) -> ServiceRequest:
        """
        Apply ``mutation`` to the request iff its version is ``expected_version``.

        ``stage`` runs after the conditional UPDATE has been flushed and may
        add dependent rows (audit events) to the same transaction. Either
        everything lands or nothing does.

        Raises:
            NotFound: no such request
            VersionConflict: the stored version differs, before or during the write
        """
        request = self.load(request_id)
        if request.version != expected_version:
            raise VersionConflict(request_id, expected_version, request.version)

        try:
            mutation(request)
            self.db.flush()
            if stage is not None:
                stage(request)
            self.db.commit()
        except StaleDataError:
            # Someone else committed on the same base version first
            self.db.rollback()
            logger.warning(
                "Lost update race on request %s at version %s", request_id, expected_version
            )
            raise VersionConflict(request_id, expected_version)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Commit failed for request %s", request_id)
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(request)
        return request

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        creator_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        department_id: Optional[str] = None,
        priority: Optional[Priority] = None,
        category: Optional[str] = None,
        text: Optional[str] = None,
        sort: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[ServiceRequest], int]:
        """
        Return one page of matching requests and the total match count.

        ``category`` and ``text`` match case-insensitively on a substring;
        ``text`` searches title and description. ``sort`` is ``field:dir``
        over SORT_FIELDS, newest first when absent or not recognised.
        """
        query = self.db.query(ServiceRequest)
        if status is not None:
            query = query.filter(ServiceRequest.status == status)
        if creator_id is not None:
            query = query.filter(ServiceRequest.creator_id == creator_id)
        if assignee_id is not None:
            query = query.filter(ServiceRequest.assignee_id == assignee_id)
        if department_id is not None:
            query = query.filter(ServiceRequest.department_id == department_id)
        if priority is not None:
            query = query.filter(ServiceRequest.priority == priority)
        if category:
            query = query.filter(ServiceRequest.category.ilike(f"%{category}%"))
        if text:
            pattern = f"%{text}%"
            query = query.filter(or_(
                ServiceRequest.title.ilike(pattern),
                ServiceRequest.description.ilike(pattern)
            ))

        total = query.with_entities(func.count(ServiceRequest.id)).scalar()
        items = (
            query.order_by(order_by(sort), ServiceRequest.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total
