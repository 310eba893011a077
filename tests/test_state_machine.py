"""
State Machine Tests

Only the transitions in the lifecycle table are legal, terminal statuses
have no way out, and each move is limited to the right actor.
"""

import pytest

from agrohaul.dispatch.state_machine import (
    TRANSITIONS,
    apply_transition,
    authorize_transition,
    can_transition,
    validate_transition,
)
from agrohaul.exceptions import AuthorizationError, InvalidTransitionError
from agrohaul.models import ActorContext, BookingStatus, Role, TERMINAL_STATUSES

S = BookingStatus

LEGAL = {
    (S.PENDING, S.ACCEPTED),
    (S.PENDING, S.REJECTED),
    (S.PENDING, S.CANCELLED),
    (S.ACCEPTED, S.EN_ROUTE_PICKUP),
    (S.ACCEPTED, S.CANCELLED),
    (S.EN_ROUTE_PICKUP, S.PICKED_UP),
    (S.EN_ROUTE_PICKUP, S.CANCELLED),
    (S.PICKED_UP, S.EN_ROUTE_DELIVERY),
    (S.EN_ROUTE_DELIVERY, S.DELIVERED),
    (S.DELIVERED, S.COMPLETED),
}


class TestTransitionTable:
    """The table is exactly the documented lifecycle."""

    def test_table_matches_lifecycle(self):
        table = {(src, dst) for src, targets in TRANSITIONS.items() for dst in targets}
        assert table == LEGAL

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(BookingStatus)

    def test_terminal_statuses_are_absorbing(self):
        for status in TERMINAL_STATUSES:
            assert TRANSITIONS[status] == frozenset(), f"{status.value} must have no exits"
            assert status.is_terminal

    def test_illegal_moves_raise_with_both_statuses(self, pending):
        """Every move outside the table is an InvalidTransitionError"""
        for target in BookingStatus:
            if (S.PENDING, target) in LEGAL:
                continue
            with pytest.raises(InvalidTransitionError) as exc_info:
                validate_transition(pending, target)
            assert exc_info.value.current_status == S.PENDING
            assert exc_info.value.requested_status == target

    def test_can_transition(self):
        assert can_transition(S.DELIVERED, S.COMPLETED)
        assert not can_transition(S.PICKED_UP, S.CANCELLED)
        assert not can_transition(S.COMPLETED, S.CANCELLED)


class TestActorRules:
    """Who may make which move."""

    def test_only_bound_carrier_advances_trip(self, accepted, carrier_b, requester):
        for actor in (carrier_b, requester):
            with pytest.raises(AuthorizationError):
                authorize_transition(accepted, actor, S.EN_ROUTE_PICKUP)

    def test_bound_carrier_may_advance(self, accepted, carrier_a):
        authorize_transition(accepted, carrier_a, S.EN_ROUTE_PICKUP)

    def test_cancel_by_either_party(self, accepted, carrier_a, requester, outsider):
        authorize_transition(accepted, carrier_a, S.CANCELLED)
        authorize_transition(accepted, requester, S.CANCELLED)
        with pytest.raises(AuthorizationError):
            authorize_transition(accepted, outsider, S.CANCELLED)

    def test_requester_cannot_match(self, pending, requester):
        with pytest.raises(AuthorizationError):
            authorize_transition(pending, requester, S.ACCEPTED)


class TestApplyTransition:
    def test_appends_one_timeline_entry(self, accepted, carrier_a):
        updated = apply_transition(accepted, carrier_a, S.EN_ROUTE_PICKUP, note="Leaving depot")

        assert updated.status == S.EN_ROUTE_PICKUP
        assert len(updated.timeline) == len(accepted.timeline) + 1
        assert updated.timeline[-1].status == updated.status
        assert updated.timeline[-1].note == "Leaving depot"
        assert updated.timeline[-1].actor_id == carrier_a.actor_id

    def test_input_is_not_mutated(self, accepted, carrier_a):
        apply_transition(accepted, carrier_a, S.EN_ROUTE_PICKUP)
        assert accepted.status == S.ACCEPTED

    def test_invalid_move_leaves_status(self, accepted, carrier_a):
        with pytest.raises(InvalidTransitionError):
            apply_transition(accepted, carrier_a, S.DELIVERED)
        assert accepted.status == S.ACCEPTED

    def test_admin_may_cancel(self, accepted):
        admin = ActorContext(actor_id="ops", role=Role.ADMIN)
        assert apply_transition(accepted, admin, S.CANCELLED, note="Fraud").status == S.CANCELLED
