"""Integration tests for the complete request workflow.

Tests end-to-end flows against a SQLite database:
1. Leave request through all four levels
2. Outpass rejected at the warden level
3. One pending request per student
4. Wrong-level and stale decisions leave the request untouched
5. Concurrent approvals by two holders of the same role
6. Cancellation
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import patch
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from leaveflow.core.workflow.exceptions import Forbidden, InvalidTransition, NotFound, ValidationError
from leaveflow.core.workflow.service import WorkflowService
from leaveflow.core.workflow.states import ApprovalLevel, Decision, EffectKind, chain_for
from leaveflow.db.models import LeaveRequest, RequestHistory
from leaveflow.services.directory import IdentityDirectory
from leaveflow.services.notifications import NotificationDispatcher

from tests.factories import create_approver, create_request, create_student, submission_kwargs


pytestmark = pytest.mark.integration


def submit(workflow, people, request_type="outpass", **overrides):
    return workflow.submit_request(
        submitter_id=people["student"].id,
        **submission_kwargs(
            request_type,
            counsellor=people["counsellor"],
            warden=people["warden"],
            hod=people["hod"] if request_type == "leave" else None,
            **overrides,
        ),
    )


def decide(workflow, people, request, role, decision="approve", comment=None):
    return workflow.decide(
        request.id,
        actor_id=people[role].id,
        actor_role=role,
        decision=decision,
        comment=comment,
    )


class TestSubmission:
    """Test request creation."""

    def test_submit_outpass(self, workflow, people, notifier):
        request = submit(workflow, people)

        assert request.status == "pending"
        assert request.current_level == "counsellor"
        assert request.version == 1
        assert set(request.approvals) == {"counsellor", "warden"}
        assert not any(record.approved for record in request.approvals.values())
        assert request.hod_email is None
        assert request.duration_hours == 5
        assert notifier.effects == [
            (EffectKind.SUBMITTED, None),
            (EffectKind.FORWARD, ApprovalLevel.COUNSELLOR),
            (EffectKind.APPROVERS_NAMED, None),
        ]

    def test_submit_leave_snapshots_approver_emails(self, workflow, people):
        request = submit(workflow, people, "leave")

        assert set(request.approvals) == {"counsellor", "hod", "joint_director", "warden"}
        assert request.approver_emails == {
            "counsellor": people["counsellor"].email,
            "warden": people["warden"].email,
            "hod": people["hod"].email,
        }
        assert request.duration_days == 3

    def test_offset_schedule_is_stored_in_utc(self, workflow, people):
        request = submit(workflow, people, schedule={
            "initial_time": "2030-01-01T10:00:00+05:30",
            "expected_return_time": "2030-01-01T06:00:00Z",
        })

        stored = workflow.get_request(request.id)
        assert stored.initial_time == datetime(2030, 1, 1, 4, 30)
        assert stored.expected_return_time == datetime(2030, 1, 1, 6, 0)
        assert stored.duration_hours == 2

    def test_leave_submission_reaches_named_approvers(self, workflow, people, notifier, db_session):
        request = submit(workflow, people, "leave")
        dispatcher = NotificationDispatcher(IdentityDirectory(db_session))

        recipients = set()
        for _, effect in notifier.calls:
            recipients.update(r.id for r in dispatcher.plan(request, effect).recipients)

        assert recipients == {
            people["student"].id,
            people["counsellor"].id,
            people["hod"].id,
            people["warden"].id,
        }

    def test_submission_history(self, workflow, people):
        request = submit(workflow, people)
        history = workflow.get_history(request.id)

        assert [(h.decision, h.to_status, h.to_level) for h in history] == [("submit", "pending", "counsellor")]
        assert history[0].actor_id == people["student"].id

    def test_second_pending_request_is_refused(self, workflow, people, db_session):
        submit(workflow, people)

        with pytest.raises(ValidationError) as exc_info:
            submit(workflow, people, reason="Another reason for going out")
        assert "pending application" in exc_info.value.message
        assert db_session.query(LeaveRequest).count() == 1

    def test_new_request_after_cancel(self, workflow, people):
        first = submit(workflow, people)
        workflow.cancel(first.id, people["student"].id)

        second = submit(workflow, people)
        assert second.id != first.id

    def test_unknown_approver_email(self, workflow, people):
        with pytest.raises(ValidationError) as exc_info:
            workflow.submit_request(
                submitter_id=people["student"].id,
                **submission_kwargs(
                    "outpass",
                    counsellor=people["hod"],
                    warden=people["warden"],
                ),
            )
        assert exc_info.value.errors[0]["field"] == "approver_emails.counsellor"

    def test_inactive_approver_email(self, workflow, people, db_session):
        people["warden"].is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            submit(workflow, people)

    def test_email_lookup_is_case_insensitive(self, workflow, people):
        request = submit(
            workflow, people,
            approver_emails={
                "counsellor": people["counsellor"].email.upper(),
                "warden": people["warden"].email,
            },
        )
        assert request.counsellor_email == people["counsellor"].email

    def test_approver_cannot_submit(self, workflow, people):
        with pytest.raises(Forbidden):
            workflow.submit_request(
                submitter_id=people["warden"].id,
                **submission_kwargs("outpass", counsellor=people["counsellor"], warden=people["warden"]),
            )

    def test_invalid_fields(self, workflow, people, notifier):
        with pytest.raises(ValidationError):
            submit(workflow, people, attendance=120)
        assert notifier.calls == []

    def test_partial_unique_index(self, db_session):
        student = create_student(db_session)
        create_request(db_session, submitter=student, status="approved", current_level="completed")
        create_request(db_session, submitter=student)

        with pytest.raises(IntegrityError):
            create_request(db_session, submitter=student)


class TestLeaveChain:
    """Test a leave request through every level."""

    def test_full_approval(self, workflow, people, notifier):
        request = submit(workflow, people, "leave")

        request = decide(workflow, people, request, "counsellor", comment="Good attendance")
        assert (request.status, request.current_level) == ("pending", "hod")
        request = decide(workflow, people, request, "hod")
        assert request.current_level == "joint_director"
        request = decide(workflow, people, request, "joint_director")
        assert request.current_level == "warden"
        request = decide(workflow, people, request, "warden")

        assert request.status == "approved"
        assert request.current_level == "completed"
        assert request.version == 5
        assert all(record.approved for record in request.approvals.values())
        assert request.approvals["counsellor"].comment == "Good attendance"
        assert request.approvals["hod"].approver_id == people["hod"].id

        assert notifier.effects[3:] == [
            (EffectKind.FORWARD, ApprovalLevel.HOD),
            (EffectKind.FORWARD, ApprovalLevel.JOINT_DIRECTOR),
            (EffectKind.FORWARD, ApprovalLevel.WARDEN),
            (EffectKind.FINAL_APPROVAL, None),
        ]

        history = workflow.get_history(request.id)
        assert [h.to_level for h in history] == [
            "counsellor", "hod", "joint_director", "warden", "completed",
        ]

    def test_no_decision_after_approval(self, workflow, people):
        request = submit(workflow, people)
        decide(workflow, people, request, "counsellor")
        decide(workflow, people, request, "warden")

        with pytest.raises(InvalidTransition):
            decide(workflow, people, request, "warden", "reject", "changed my mind")


class TestRejection:
    """Test rejection at a later level."""

    def test_outpass_rejected_by_warden(self, workflow, people, notifier):
        request = submit(workflow, people)
        decide(workflow, people, request, "counsellor")

        request = decide(workflow, people, request, "warden", "reject", "insufficient notice")

        assert request.status == "rejected"
        assert request.current_level == "warden"
        assert request.rejected_by == people["warden"].id
        assert request.rejection_reason == "insufficient notice"
        assert request.rejected_at is not None
        assert request.approvals["counsellor"].approved is True
        assert request.approvals["warden"].approved is False
        assert notifier.effects[-1] == (EffectKind.FINAL_REJECTION, None)

        with pytest.raises(InvalidTransition):
            decide(workflow, people, request, "warden")

    def test_outpass_rejected_by_counsellor(self, workflow, people):
        request = submit(workflow, people)

        request = decide(workflow, people, request, "counsellor", "reject", "insufficient notice")

        assert (request.status, request.current_level) == ("rejected", "counsellor")
        assert not any(record.approved for record in request.approvals.values())
        with pytest.raises(InvalidTransition):
            decide(workflow, people, request, "counsellor", "reject", "insufficient notice")

    def test_rejection_needs_reason(self, workflow, people):
        request = submit(workflow, people)
        before = request.snapshot()

        with pytest.raises(ValidationError):
            decide(workflow, people, request, "counsellor", "reject", "no")
        assert workflow.get_request(request.id).snapshot() == before


class TestUnauthorizedDecisions:
    """Refused decisions never change the request."""

    def test_wrong_level(self, workflow, people, notifier):
        request = submit(workflow, people)
        before = request.snapshot()
        calls = len(notifier.calls)

        with pytest.raises(Forbidden):
            decide(workflow, people, request, "warden")

        assert workflow.get_request(request.id).snapshot() == before
        assert len(notifier.calls) == calls

    @pytest.mark.parametrize("role,decision,comment,error", [
        ("warden", "approve", None, Forbidden),
        ("counsellor", "reject", "no", ValidationError),
    ])
    def test_refused_decision_releases_row(self, workflow, people, role, decision, comment, error):
        request = submit(workflow, people)

        with patch.object(workflow.db, "rollback", wraps=workflow.db.rollback) as rollback:
            with pytest.raises(error):
                decide(workflow, people, request, role, decision, comment)

        rollback.assert_called_once()

    def test_stale_decision_releases_row(self, workflow, people):
        request = submit(workflow, people)
        decide(workflow, people, request, "counsellor")

        with patch.object(workflow.db, "rollback", wraps=workflow.db.rollback) as rollback:
            with pytest.raises(InvalidTransition):
                decide(workflow, people, request, "counsellor")

        rollback.assert_called_once()

    def test_role_outside_chain(self, workflow, people):
        request = submit(workflow, people)
        decide(workflow, people, request, "counsellor")

        with pytest.raises(Forbidden):
            decide(workflow, people, request, "hod")

    def test_student_cannot_decide(self, workflow, people):
        request = submit(workflow, people)
        with pytest.raises(Forbidden):
            workflow.decide(request.id, people["student"].id, "student", "approve")

    def test_claimed_role_must_match(self, workflow, people):
        request = submit(workflow, people)
        with pytest.raises(Forbidden):
            workflow.decide(request.id, people["warden"].id, "counsellor", "approve")

    def test_unknown_decision(self, workflow, people):
        request = submit(workflow, people)
        with pytest.raises(ValidationError):
            workflow.decide(request.id, people["counsellor"].id, "counsellor", "cancel")

    def test_missing_request(self, workflow, people):
        with pytest.raises(NotFound):
            workflow.decide(uuid4(), people["counsellor"].id, "counsellor", "approve")


class TestConcurrency:
    """Two holders of the same role act on the same request."""

    def test_second_counsellor_gets_invalid_transition(self, workflow, people, db_session):
        second = create_approver(db_session, "counsellor")
        db_session.commit()
        request = submit(workflow, people)
        decide(workflow, people, request, "counsellor")

        with pytest.raises(InvalidTransition):
            workflow.decide(request.id, second.id, "counsellor", "approve")

        stored = workflow.get_request(request.id)
        assert stored.current_level == "warden"
        assert stored.version == 2
        assert stored.approvals["counsellor"].approver_id == people["counsellor"].id

    def test_stale_read_loses_compare_and_swap(self, workflow, people, db_session, session_factory):
        second = create_approver(db_session, "counsellor")
        db_session.commit()
        request = submit(workflow, people)

        other_session = session_factory()
        try:
            other = WorkflowService(other_session)
            stale = other_session.get(LeaveRequest, request.id)
            stale_version = stale.version
            assert stale.current_level == "counsellor"

            # First counsellor wins
            decide(workflow, people, request, "counsellor")

            outcome = other._machine_for(stale).transition(
                Decision.APPROVE, acting_role=ApprovalLevel.COUNSELLOR, actor_id=second.id,
            )
            with pytest.raises(InvalidTransition):
                other._apply(stale, outcome, stale_version)
        finally:
            other_session.close()

        db_session.expire_all()
        stored = db_session.get(LeaveRequest, request.id)
        assert stored.current_level == "warden"
        assert stored.version == 2
        history = db_session.query(RequestHistory).filter_by(request_id=request.id).all()
        assert len(history) == 2


class TestCancel:
    """Test cancellation by the submitter."""

    def test_cancel_pending(self, workflow, people, notifier):
        request = submit(workflow, people, "leave")
        decide(workflow, people, request, "counsellor")
        calls = len(notifier.calls)

        request = workflow.cancel(request.id, people["student"].id)

        assert request.status == "cancelled"
        assert request.current_level == "hod"
        assert len(notifier.calls) == calls

    def test_only_submitter_can_cancel(self, workflow, people, db_session):
        request = submit(workflow, people)
        other = create_student(db_session)
        db_session.commit()

        with pytest.raises(Forbidden):
            workflow.cancel(request.id, other.id)

    def test_refused_cancel_releases_row(self, workflow, people, db_session):
        request = submit(workflow, people)
        other = create_student(db_session)
        db_session.commit()

        with patch.object(workflow.db, "rollback", wraps=workflow.db.rollback) as rollback:
            with pytest.raises(Forbidden):
                workflow.cancel(request.id, other.id)

        rollback.assert_called_once()

    def test_cannot_cancel_decided(self, workflow, people):
        request = submit(workflow, people)
        decide(workflow, people, request, "counsellor", "reject", "not a valid reason")

        with pytest.raises(InvalidTransition):
            workflow.cancel(request.id, people["student"].id)


class TestNotificationFailures:
    """Notifier failures never undo a committed transition."""

    def test_failing_notifier(self, db_session, people):
        def broken(request_id, effect):
            raise RuntimeError("broker down")

        workflow = WorkflowService(db_session, notifier=broken)
        request = submit(workflow, people)
        request = decide(workflow, people, request, "counsellor")

        assert request.current_level == "warden"


class TestQueries:
    """Test listing and statistics."""

    def test_requests_for_role(self, workflow, people, db_session):
        mine = submit(workflow, people)
        other_student = create_student(db_session)
        other = create_request(db_session, submitter=other_student, current_level="warden")
        create_request(db_session, status="approved", current_level="completed")
        db_session.commit()

        assert [r.id for r in workflow.get_requests_for_role("counsellor")] == [mine.id]
        assert [r.id for r in workflow.get_requests_for_role("warden")] == [other.id]
        assert workflow.count_requests_for_role("warden", request_type="leave") == 0

    def test_requests_for_submitter(self, workflow, people):
        first = submit(workflow, people)
        workflow.cancel(first.id, people["student"].id)
        second = submit(workflow, people)

        student_id = people["student"].id
        assert [r.id for r in workflow.get_requests_for_submitter(student_id)] == [second.id, first.id]
        assert workflow.count_requests_for_submitter(student_id, status="cancelled") == 1
        assert [r.id for r in workflow.get_requests_for_submitter(student_id, limit=1, offset=1)] == [first.id]

    def test_statistics(self, workflow, db_session):
        now = datetime(2026, 10, 21, 12, 0)  # a Wednesday
        create_request(db_session, submitted_at=now - timedelta(hours=1))
        create_request(db_session, request_type="leave", submitted_at=now - timedelta(days=2))
        create_request(db_session, current_level="warden", submitted_at=now - timedelta(days=10))
        create_request(db_session, status="approved", current_level="completed",
                       submitted_at=now - timedelta(days=40))
        db_session.commit()

        counsellor = workflow.get_statistics("counsellor", now=now)
        assert counsellor == {
            "pending": 2, "today": 1, "this_week": 2, "this_month": 2, "leave": 1, "outpass": 1,
        }

        warden = workflow.get_statistics("warden", now=now)
        assert warden["pending"] == 3
        assert warden["this_month"] == 3
        assert warden["leave"] == 1
        assert warden["outpass"] == 3


class TestLevelSequences:
    """Visited levels always follow the request type's chain."""

    @pytest.mark.parametrize("request_type,steps", [
        ("outpass", ["counsellor"]),
        ("outpass", ["counsellor", "warden"]),
        ("leave", ["counsellor", "hod"]),
        ("leave", ["counsellor", "hod", "joint_director", "warden"]),
    ])
    def test_history_is_chain_prefix(self, workflow, people, request_type, steps):
        request = submit(workflow, people, request_type)
        for role in steps:
            decide(workflow, people, request, role)

        visited = [h.to_level for h in workflow.get_history(request.id)]
        chain = [level.value for level in chain_for(request_type)]
        assert visited == chain[:len(visited)]
        assert len(visited) == len(steps) + 1
