"""
The transition table - the single declarative source of truth for the workflow.

Closed world: any (status, action) pair not listed here is an invalid
transition. Role checks are plain set membership; there is no hierarchy.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Tuple, Union
from civic_requests.models.enums import Action, RequestStatus, Role, TERMINAL_STATUSES
from civic_requests.services.errors import InvalidTransition


@dataclass(frozen=True)
class TransitionRule:
    """One row of the table: where an action leads and who may invoke it."""
    from_status: RequestStatus
    action: Action
    to_status: RequestStatus
    allowed_roles: FrozenSet[Role]
    requires_reason: bool = False
    assigns: bool = False  # Accepts assignee_id / department_id

    @property
    def sets_closed_at(self) -> bool:
        return self.to_status in TERMINAL_STATUSES

    @property
    def clears_closed_at(self) -> bool:
        return self.action == Action.REOPEN


OFFICE = frozenset({Role.CLERK, Role.SUPERVISOR, Role.ADMIN})
FIELD = frozenset({Role.FIELD_AGENT, Role.SUPERVISOR, Role.ADMIN})
OFFICE_AND_FIELD = OFFICE | FIELD

S = RequestStatus
A = Action

_RULES = (
    TransitionRule(S.SUBMITTED, A.TRIAGE, S.TRIAGED, OFFICE, assigns=True),
    TransitionRule(S.SUBMITTED, A.REQUEST_MORE_INFO, S.WAITING_ON_CITIZEN, OFFICE),
    TransitionRule(S.SUBMITTED, A.REJECT, S.REJECTED, OFFICE, requires_reason=True),

    TransitionRule(S.TRIAGED, A.START, S.IN_PROGRESS, OFFICE_AND_FIELD, assigns=True),
    TransitionRule(S.TRIAGED, A.REQUEST_MORE_INFO, S.WAITING_ON_CITIZEN, OFFICE),
    TransitionRule(S.TRIAGED, A.REJECT, S.REJECTED, OFFICE, requires_reason=True),

    TransitionRule(S.IN_PROGRESS, A.RESOLVE, S.RESOLVED, FIELD),
    TransitionRule(S.IN_PROGRESS, A.WAIT_FOR_CITIZEN, S.WAITING_ON_CITIZEN, FIELD),
    TransitionRule(S.IN_PROGRESS, A.REQUEST_MORE_INFO, S.WAITING_ON_CITIZEN, FIELD),
    TransitionRule(S.IN_PROGRESS, A.REJECT, S.REJECTED, OFFICE, requires_reason=True),

    TransitionRule(S.WAITING_ON_CITIZEN, A.RESUME_PROGRESS, S.IN_PROGRESS, OFFICE),
    TransitionRule(S.WAITING_ON_CITIZEN, A.CLOSE_NO_RESPONSE, S.CLOSED, OFFICE),

    TransitionRule(S.RESOLVED, A.CLOSE, S.CLOSED, OFFICE),
    TransitionRule(S.RESOLVED, A.REOPEN, S.IN_PROGRESS, OFFICE),
    # CLOSED and REJECTED are terminal: no outgoing rows.
)

TRANSITIONS: Dict[Tuple[RequestStatus, Action], TransitionRule] = {
    (rule.from_status, rule.action): rule for rule in _RULES
}


def _coerce_action(action: Union[Action, str]):
    if isinstance(action, Action):
        return action
    try:
        return Action(action)
    except ValueError:
        return None


def lookup(current_status: RequestStatus, action: Union[Action, str]) -> TransitionRule:
    """
    Return the rule for ``(current_status, action)``.

    Raises InvalidTransition for unknown actions and for actions that are
    legal only from a different status.
    """
    status = RequestStatus(current_status)
    coerced = _coerce_action(action)
    rule = TRANSITIONS.get((status, coerced)) if coerced is not None else None
    if rule is None:
        action_name = coerced.value if coerced is not None else str(action)
        raise InvalidTransition(
            f"Cannot apply '{action_name}' to a request in status {status.value}",
            {
                "current_status": status.value,
                "action": action_name,
                "allowed_actions": [r.action.value for r in actions_for(status)],
            }
        )
    return rule


def actions_for(status: RequestStatus) -> List[TransitionRule]:
    """Rules whose source is ``status``, in table order."""
    return [rule for rule in _RULES if rule.from_status == status]


def rules() -> Iterable[TransitionRule]:
    return iter(_RULES)
