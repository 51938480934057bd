"""Tests for the declarative transition table."""
import pytest
from civic_requests.models.enums import Action, RequestStatus, Role, TERMINAL_STATUSES
from civic_requests.services.errors import InvalidTransition
from civic_requests.services.transitions import TRANSITIONS, actions_for, lookup, rules


class TestTransitionTable:
    """The table is closed-world and is the only source of role lists."""

    def test_table_has_fourteen_rules(self):
        assert len(TRANSITIONS) == 14

    def test_lookup_returns_rule(self):
        rule = lookup(RequestStatus.SUBMITTED, Action.TRIAGE)

        assert rule.to_status == RequestStatus.TRIAGED
        assert rule.allowed_roles == {Role.CLERK, Role.SUPERVISOR, Role.ADMIN}
        assert rule.assigns is True

    def test_lookup_accepts_action_strings(self):
        assert lookup(RequestStatus.TRIAGED, "start").to_status == RequestStatus.IN_PROGRESS

    def test_unknown_action_is_invalid_transition(self):
        with pytest.raises(InvalidTransition) as exc_info:
            lookup(RequestStatus.SUBMITTED, "teleport")

        assert exc_info.value.code == "INVALID_TRANSITION"
        assert exc_info.value.details["action"] == "teleport"

    def test_action_legal_elsewhere_is_invalid_transition(self):
        """resolve exists, but not from SUBMITTED."""
        with pytest.raises(InvalidTransition) as exc_info:
            lookup(RequestStatus.SUBMITTED, Action.RESOLVE)

        assert set(exc_info.value.details["allowed_actions"]) == {"triage", "request_more_info", "reject"}

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
    def test_terminal_statuses_have_no_outgoing_rules(self, status):
        assert actions_for(status) == []

    def test_reopen_only_from_resolved(self):
        sources = {rule.from_status for rule in rules() if rule.action == Action.REOPEN}
        assert sources == {RequestStatus.RESOLVED}

    def test_only_reject_requires_reason(self):
        requiring = {rule.action for rule in rules() if rule.requires_reason}
        assert requiring == {Action.REJECT}

    def test_closed_at_flags(self):
        assert lookup(RequestStatus.RESOLVED, Action.CLOSE).sets_closed_at
        assert lookup(RequestStatus.IN_PROGRESS, Action.REJECT).sets_closed_at
        assert not lookup(RequestStatus.IN_PROGRESS, Action.RESOLVE).sets_closed_at
        assert lookup(RequestStatus.RESOLVED, Action.REOPEN).clears_closed_at

    def test_citizens_drive_no_transition(self):
        assert all(Role.CITIZEN not in rule.allowed_roles for rule in rules())

    def test_field_agent_may_start_but_not_triage(self):
        assert Role.FIELD_AGENT in lookup(RequestStatus.TRIAGED, Action.START).allowed_roles
        assert Role.FIELD_AGENT not in lookup(RequestStatus.SUBMITTED, Action.TRIAGE).allowed_roles

    def test_clerk_may_not_resolve(self):
        """Role sets are explicit membership: CLERK is not listed for resolve."""
        assert Role.CLERK not in lookup(RequestStatus.IN_PROGRESS, Action.RESOLVE).allowed_roles
