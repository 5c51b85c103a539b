"""Tests for the approval gate and the adjustment ledger."""

from decimal import Decimal

import pytest

from quizrecon.reconciliation.adjustments import append_adjustment
from quizrecon.reconciliation.approval import ApprovalGate, approve
from quizrecon.reconciliation.awards import PrizeAwardStateMachine
from quizrecon.reconciliation.errors import LockedError, ReconciliationError, ValidationError
from quizrecon.reconciliation.models import AdjustmentType


class TestApprovalGate:

    def test_blank_name_rejected(self, record, clock):
        gate = ApprovalGate(clock=clock)
        for name in ("", "   ", None):
            with pytest.raises(ValidationError) as exc:
                gate.approve(record, name)
            assert exc.value.reason == "approver_required"
        assert not record.is_approved

    def test_approve_sets_name_and_time(self, record, clock):
        approved = ApprovalGate(clock=clock).approve(record, "  Jane ", notes="all good")
        assert approved.approved_by == "Jane"
        assert approved.approved_at.isoformat() == "2024-05-01T20:00:00+00:00"
        assert approved.notes == "all good"
        assert approved.is_approved

    def test_reapproval_rejected(self, record, clock):
        gate = ApprovalGate(clock=clock)
        approved = gate.approve(record, "Jane")
        with pytest.raises(ValidationError) as exc:
            gate.approve(approved, "Bob")
        assert exc.value.reason == "already_approved"
        assert exc.value.details["approved_by"] == "Jane"

    def test_transition_after_approval_locked(self, record, clock):
        machine = PrizeAwardStateMachine(clock)
        record = machine.declare(record, prize_name="Hamper", by="host", prize_award_id="a1")
        approved = approve(record, "Jane", clock=clock)
        with pytest.raises(LockedError) as exc:
            machine.mark_delivered(
                approved, "a1", by="host", award_method="collection", winner_confirmed=True,
            )
        assert exc.value.reason == "record_approved"
        assert approved.find_award("a1").status.value == "declared"

    def test_notes_locked_by_default(self, record, clock):
        gate = ApprovalGate(clock=clock)
        approved = gate.approve(record, "Jane")
        assert not gate.notes_editable(approved)
        with pytest.raises(LockedError):
            gate.update_notes(approved, "changed")

    def test_notes_editable_when_configured(self, record, clock):
        gate = ApprovalGate(notes_editable_after_approval=True, clock=clock)
        approved = gate.approve(record, "Jane")
        updated = gate.update_notes(approved, "late remark")
        assert updated.notes == "late remark"
        assert updated.approved_by == "Jane"

    def test_notes_editable_before_approval(self, record):
        gate = ApprovalGate()
        assert gate.update_notes(record, "draft note").notes == "draft note"
        assert gate.update_notes(record, None).notes == ""

    def test_error_serializes(self, record):
        with pytest.raises(ReconciliationError) as exc:
            ApprovalGate().approve(record, "")
        payload = exc.value.to_dict()
        assert payload["error"] == "ValidationError"
        assert payload["reason"] == "approver_required"


class TestAppendAdjustment:

    def test_appends_in_order(self, record, clock):
        record = append_adjustment(record, type="fee", amount="1.5", created_by="host", clock=clock)
        record = append_adjustment(
            record, type="received", amount=3, created_by="host", method="cash", clock=clock,
        )
        assert [a.type for a in record.ledger] == [AdjustmentType.FEE, AdjustmentType.RECEIVED]
        assert record.ledger[0].amount == Decimal("1.50")
        assert record.ledger[0].timestamp < record.ledger[1].timestamp
        assert record.ledger[0].id != record.ledger[1].id

    def test_requires_author(self, record):
        with pytest.raises(ValidationError) as exc:
            append_adjustment(record, type="fee", amount=1, created_by=" ")
        assert exc.value.reason == "created_by_required"

    def test_negative_amount_rejected(self, record):
        with pytest.raises(ValidationError) as exc:
            append_adjustment(record, type="refund", amount="-2", created_by="host")
        assert exc.value.reason == "invalid_value"

    def test_cash_over_short_needs_reason(self, record):
        with pytest.raises(ValidationError):
            append_adjustment(record, type="cash_over_short", amount=1, created_by="host")
        updated = append_adjustment(
            record, type="cash_over_short", amount=1, created_by="host", reason_code="cash_over",
        )
        assert updated.ledger[0].reason_code.value == "cash_over"

    def test_linked_award_must_exist(self, record, clock):
        with pytest.raises(ValidationError) as exc:
            append_adjustment(
                record, type="prize_payout", amount=5, created_by="host", prize_award_id="nope",
            )
        assert exc.value.reason == "award_not_found"

        record = PrizeAwardStateMachine(clock).declare(
            record, prize_name="Cash prize", by="host", prize_award_id="a1",
        )
        record = append_adjustment(
            record, type="prize_payout", amount=5, created_by="host",
            prize_award_id="a1", reason_code="prize_award_delivered",
        )
        assert record.ledger[0].prize_award_id == "a1"

    def test_locked_after_approval(self, record, clock):
        approved = approve(record, "Jane", clock=clock)
        with pytest.raises(LockedError):
            append_adjustment(approved, type="fee", amount=1, created_by="host")
