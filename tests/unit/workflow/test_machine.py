"""Tests for the request state machine."""

import pytest
from uuid import uuid4

from leaveflow.core.workflow.exceptions import InvalidTransition, ValidationError
from leaveflow.core.workflow.machine import RequestStateMachine
from leaveflow.core.workflow.states import (
    ApprovalLevel, Decision, EffectKind, RequestStatus, RequestType,
)


def make_machine(request_type=RequestType.OUTPASS, status=RequestStatus.PENDING,
                 level=ApprovalLevel.COUNSELLOR, approvals=None):
    return RequestStateMachine(
        request_id=uuid4(),
        request_type=request_type,
        status=status,
        current_level=level,
        approvals=approvals,
    )


class TestApprove:
    """Test approvals moving through the chain."""

    def test_outpass_full_chain(self):
        machine = make_machine()

        first = machine.transition(Decision.APPROVE, acting_role=ApprovalLevel.COUNSELLOR, actor_id=uuid4())
        assert first.to_status is RequestStatus.PENDING
        assert first.to_level is ApprovalLevel.WARDEN
        assert first.effect.kind is EffectKind.FORWARD
        assert first.effect.level is ApprovalLevel.WARDEN

        second = machine.transition(Decision.APPROVE, acting_role=ApprovalLevel.WARDEN, actor_id=uuid4())
        assert second.to_status is RequestStatus.APPROVED
        assert second.to_level is ApprovalLevel.COMPLETED
        assert second.effect.kind is EffectKind.FINAL_APPROVAL

        assert machine.is_terminal
        assert all(machine.approvals.values())

    def test_leave_full_chain(self):
        machine = make_machine(request_type=RequestType.LEAVE)
        for role in (ApprovalLevel.COUNSELLOR, ApprovalLevel.HOD,
                     ApprovalLevel.JOINT_DIRECTOR, ApprovalLevel.WARDEN):
            machine.transition(Decision.APPROVE, acting_role=role, actor_id=uuid4())

        assert machine.status is RequestStatus.APPROVED
        assert machine.current_level is ApprovalLevel.COMPLETED
        assert machine.levels_visited() == [
            ApprovalLevel.COUNSELLOR,
            ApprovalLevel.HOD,
            ApprovalLevel.JOINT_DIRECTOR,
            ApprovalLevel.WARDEN,
            ApprovalLevel.COMPLETED,
        ]

    def test_approval_sets_only_the_acting_level(self):
        machine = make_machine(request_type=RequestType.LEAVE)
        outcome = machine.transition(Decision.APPROVE, acting_role=ApprovalLevel.COUNSELLOR, comment="  ok  ")

        assert outcome.approved_level is ApprovalLevel.COUNSELLOR
        assert outcome.comment == "ok"
        assert machine.approvals[ApprovalLevel.COUNSELLOR] is True
        assert machine.approvals[ApprovalLevel.HOD] is False

    def test_wrong_level_is_refused(self):
        machine = make_machine()
        with pytest.raises(InvalidTransition):
            machine.transition(Decision.APPROVE, acting_role=ApprovalLevel.WARDEN)
        assert machine.current_level is ApprovalLevel.COUNSELLOR
        assert machine.get_history() == []

    def test_comment_too_long(self):
        machine = make_machine()
        with pytest.raises(ValidationError):
            machine.transition(Decision.APPROVE, acting_role=ApprovalLevel.COUNSELLOR, comment="x" * 201)
        assert machine.status is RequestStatus.PENDING


class TestReject:
    """Test rejections."""

    def test_reject_freezes_level(self):
        machine = make_machine(level=ApprovalLevel.WARDEN, approvals={ApprovalLevel.COUNSELLOR: True})
        outcome = machine.transition(
            Decision.REJECT, acting_role=ApprovalLevel.WARDEN, comment="insufficient notice",
        )

        assert outcome.to_status is RequestStatus.REJECTED
        assert outcome.to_level is ApprovalLevel.WARDEN
        assert outcome.comment == "insufficient notice"
        assert outcome.effect.kind is EffectKind.FINAL_REJECTION
        assert outcome.approved_level is None
        assert machine.approvals == {ApprovalLevel.COUNSELLOR: True, ApprovalLevel.WARDEN: False}

    @pytest.mark.parametrize("reason", [None, "", "no", "x" * 201])
    def test_reject_needs_valid_reason(self, reason):
        machine = make_machine()
        with pytest.raises(ValidationError):
            machine.transition(Decision.REJECT, acting_role=ApprovalLevel.COUNSELLOR, comment=reason)


class TestCancel:
    """Test cancellation by the submitter."""

    def test_cancel_pending(self):
        machine = make_machine(request_type=RequestType.LEAVE, level=ApprovalLevel.HOD)
        outcome = machine.transition(Decision.CANCEL, actor_id=uuid4())

        assert outcome.to_status is RequestStatus.CANCELLED
        assert outcome.to_level is ApprovalLevel.HOD
        assert outcome.effect.kind is EffectKind.NONE


class TestTerminal:
    """Test that terminal requests never move."""

    @pytest.mark.parametrize("status", [
        RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED,
    ])
    @pytest.mark.parametrize("decision", list(Decision))
    def test_no_transition_out_of_terminal(self, status, decision):
        machine = make_machine(status=status, level=ApprovalLevel.WARDEN)
        with pytest.raises(InvalidTransition) as exc_info:
            machine.transition(decision, acting_role=ApprovalLevel.WARDEN, comment="some reason")
        assert exc_info.value.status == status.value


class TestCallbacks:
    """Test transition callbacks."""

    def test_callback_runs_for_its_decision(self):
        machine = make_machine()
        seen = []
        machine.register_callback(Decision.APPROVE, seen.append)
        machine.register_callback(Decision.REJECT, lambda o: pytest.fail("wrong decision"))

        outcome = machine.transition(Decision.APPROVE, acting_role=ApprovalLevel.COUNSELLOR)
        assert seen == [outcome]

    def test_failing_callback_does_not_undo_transition(self):
        machine = make_machine()

        def boom(outcome):
            raise RuntimeError("hook failed")

        machine.register_callback(Decision.APPROVE, boom)
        outcome = machine.transition(Decision.APPROVE, acting_role=ApprovalLevel.COUNSELLOR)

        assert outcome.to_level is ApprovalLevel.WARDEN
        assert machine.current_level is ApprovalLevel.WARDEN
        assert len(machine.get_history()) == 1
