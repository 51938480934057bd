"""
Workflow engine that enforces the request lifecycle.

This is the core enforcement mechanism - every status change MUST go through
WorkflowEngine.apply. Checks run in a fixed order so callers always get the
most specific failure:

    NOT_FOUND → VERSION_CONFLICT → INVALID_TRANSITION → FORBIDDEN → VALIDATION_ERROR

A stale caller gets VERSION_CONFLICT whatever action it asked for.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Union
from sqlalchemy.orm import Session
from civic_requests.models.audit import AuditEvent
from civic_requests.models.domain import ServiceRequest
from civic_requests.models.enums import Action, Role
from civic_requests.services.audit_log import AuditLog, AuditRecord
from civic_requests.services.errors import Forbidden, ValidationFailed, VersionConflict, WorkflowError
from civic_requests.services.request_store import RequestStore
from civic_requests.services.transitions import TransitionRule, actions_for, lookup

logger = logging.getLogger(__name__)

AuditListener = Callable[[AuditRecord], None]


@dataclass(frozen=True)
class Actor:
    """An authenticated principal as handed over by the actor resolver. Trusted as-is."""
    actor_id: str
    role: Role
    department_id: Optional[str] = None


class WorkflowEngine:
    """The single authorized mutator of request status."""

    def __init__(self, db: Session, listeners: Optional[Iterable[AuditListener]] = None):
        self.db = db
        self.store = RequestStore(db)
        self.audit = AuditLog(db)
        self.listeners = list(listeners or [])

    def apply(
        self,
        request_id: str,
        action: Union[Action, str],
        actor: Actor,
        expected_version: int,
        reason: Optional[str] = None,
        assignee_id: Optional[str] = None,
        department_id: Optional[str] = None
    ) -> ServiceRequest:
        """
        Move a request along the transition named by ``action``.

        Returns the updated request. Raises a WorkflowError subclass on any
        refusal; nothing is written in that case and nothing is retried.
        """
        request = self.store.load(request_id)
        from_status = request.status

        try:
            if request.version != expected_version:
                raise VersionConflict(request_id, expected_version, request.version)
            rule = lookup(from_status, action)
            if actor.role not in rule.allowed_roles:
                raise Forbidden(
                    f"Role {actor.role.value} may not '{rule.action.value}' a {from_status.value} request",
                    {
                        "action": rule.action.value,
                        "role": actor.role.value,
                        "allowed_roles": sorted(role.value for role in rule.allowed_roles),
                    }
                )
            reason = self._validate(rule, reason, assignee_id, department_id)
        except WorkflowError as e:
            level = logging.WARNING if isinstance(e, VersionConflict) else logging.INFO
            logger.log(
                level, "Refused %s on request %s by %s: %s",
                getattr(action, "value", action), request_id, actor.actor_id, e.code
            )
            raise

        now = datetime.utcnow()

        def mutate(target: ServiceRequest) -> None:
            target.status = rule.to_status
            target.updated_at = now
            if rule.sets_closed_at:
                target.closed_at = now
            elif rule.clears_closed_at:
                target.closed_at = None
            if rule.assigns:
                if assignee_id is not None:
                    target.assignee_id = assignee_id
                if department_id is not None:
                    target.department_id = department_id

        staged: List[AuditEvent] = []

        def record(target: ServiceRequest) -> None:
            staged.append(self.audit.append(
                target,
                action=rule.action,
                from_status=from_status,
                to_status=rule.to_status,
                actor_id=actor.actor_id,
                actor_role=actor.role,
                reason=reason
            ))

        updated = self.store.commit(request_id, expected_version, mutate, stage=record)
        logger.info(
            "Request %s: %s %s -> %s (version %s) by %s/%s",
            request_id, rule.action.value, from_status.value, rule.to_status.value,
            updated.version, actor.actor_id, actor.role.value
        )

        self._notify(request_id, AuditRecord.of(staged[0]))
        return updated

    def available_actions(self, request_id: str, actor: Actor) -> List[Action]:
        """Actions the actor could invoke on the request right now."""
        request = self.store.load(request_id)
        return [
            rule.action for rule in actions_for(request.status)
            if actor.role in rule.allowed_roles
        ]

    def _validate(
        self,
        rule: TransitionRule,
        reason: Optional[str],
        assignee_id: Optional[str],
        department_id: Optional[str]
    ) -> Optional[str]:
        reason = reason.strip() if reason else None
        if rule.requires_reason and not reason:
            raise ValidationFailed(
                f"A reason is required to '{rule.action.value}' a request",
                {"field": "reason", "action": rule.action.value}
            )
        if not rule.assigns and (assignee_id is not None or department_id is not None):
            raise ValidationFailed(
                f"'{rule.action.value}' does not accept an assignee or department",
                {"action": rule.action.value}
            )
        return reason or None

    def _notify(self, request_id: str, event: AuditRecord) -> None:
        # The transition is already committed; a listener cannot undo it
        for listener in self.listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Audit listener %r failed for request %s", listener, request_id)
