"""Tests for record and award patch application."""

from datetime import datetime, timezone

import pytest

from quizrecon.reconciliation.approval import ApprovalGate
from quizrecon.reconciliation.awards import PrizeAwardStateMachine
from quizrecon.reconciliation.patches import (
    allowlisted,
    apply_award_patch,
    apply_patch,
    normalize_keys,
)
from quizrecon.reconciliation.models import AwardStatus, ReconciliationRecord


@pytest.fixture
def machine(clock):
    return PrizeAwardStateMachine(clock)


@pytest.fixture
def with_award(machine, record):
    return machine.declare(record, prize_name="Hamper", by="host", place=1, prize_award_id="a1")


class TestHelpers:

    def test_normalize_keys(self):
        out = normalize_keys(ReconciliationRecord, {"archiveSha256": "ab", "notes": "n", "bogus": 1})
        assert out == {"archive_sha256": "ab", "notes": "n"}

    def test_allowlisted_keeps_none(self):
        assert allowlisted({"a": None, "b": 1}, frozenset({"a"})) == {"a": None}


class TestApplyPatch:

    def test_shallow_merge(self, record):
        updated = apply_patch(record, {"notes": "counted twice"})
        assert updated.notes == "counted twice"
        assert updated.room_id == "ROOM1"

    def test_unknown_fields_dropped(self, record):
        assert apply_patch(record, {"roomId": "OTHER", "secret": 1}) is record

    def test_not_a_mapping(self, record):
        assert apply_patch(record, ["notes"]) is record
        assert apply_patch(record, None) is record

    def test_invalid_patch_leaves_record(self, record):
        # approvedBy without approvedAt breaks the record invariant
        assert apply_patch(record, {"approvedBy": "Jane"}) is record

    def test_out_of_range_amount_leaves_record(self, record):
        patch = {"ledger": [{
            "id": "adj1",
            "timestamp": "2024-05-01T21:00:00+00:00",
            "type": "fee",
            "amount": "1e40",
            "createdBy": "host",
        }]}
        assert apply_patch(record, patch) is record

    def test_remote_approval(self, record):
        updated = apply_patch(record, {
            "approvedBy": "Jane",
            "approvedAt": "2024-05-01T22:00:00+00:00",
        })
        assert updated.is_approved
        assert updated.approved_by == "Jane"

    def test_prize_awards_array_replacement(self, record, with_award):
        wire = [a.to_wire() for a in with_award.prize_awards]
        updated = apply_patch(record, {"prizeAwards": wire})
        assert updated.find_award("a1").prize_name == "Hamper"

    def test_approved_record_accepts_only_archive_metadata(self, with_award, clock):
        approved = ApprovalGate(clock=clock).approve(with_award, "Jane")
        generated = datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc)
        updated = apply_patch(approved, {
            "archiveGeneratedAt": generated.isoformat(),
            "archiveSha256": "f" * 64,
            "prizeAwards": [],
            "ledger": [],
            "notes": "sneaky",
        })
        assert updated.archive_generated_at == generated
        assert updated.archive_sha256 == "f" * 64
        assert len(updated.prize_awards) == 1
        assert updated.notes == ""

    def test_notes_after_approval_when_configured(self, record, clock):
        approved = ApprovalGate(clock=clock).approve(record, "Jane")
        assert apply_patch(approved, {"notes": "x"}) is approved
        updated = apply_patch(approved, {"notes": "x"}, notes_editable_after_approval=True)
        assert updated.notes == "x"


class TestApplyAwardPatch:

    def test_field_merge(self, with_award, machine):
        updated = apply_award_patch(with_award, "a1", {"prizeName": "Wine"}, machine=machine)
        assert updated.find_award("a1").prize_name == "Wine"

    def test_server_owned_fields_ignored(self, with_award, machine):
        updated = apply_award_patch(
            with_award, "a1", {"statusHistory": [], "declaredAt": None}, machine=machine,
        )
        assert updated is with_award

    def test_fields_and_delivery_together(self, with_award, machine):
        updated = apply_award_patch(with_award, "a1", {
            "awardMethod": "collection",
            "winnerConfirmed": True,
            "status": "delivered",
            "by": "Jane",
            "note": "picked up",
        }, machine=machine)
        award = updated.find_award("a1")
        assert award.status == AwardStatus.DELIVERED
        assert award.status_history[-1].by == "Jane"
        assert award.status_history[-1].note == "picked up"

    def test_guard_failure_drops_whole_patch(self, with_award, machine):
        updated = apply_award_patch(
            with_award, "a1", {"prizeName": "Wine", "status": "delivered"}, machine=machine,
        )
        assert updated is with_award

    def test_default_actor(self, with_award, machine):
        updated = apply_award_patch(with_award, "a1", {"status": "unclaimed"}, machine=machine)
        assert updated.find_award("a1").status_history[-1].by == "remote"

    def test_same_status_is_not_a_transition(self, with_award, machine):
        updated = apply_award_patch(with_award, "a1", {"status": "declared"}, machine=machine)
        assert updated is with_award

    def test_unknown_status_dropped(self, with_award, machine):
        assert apply_award_patch(with_award, "a1", {"status": "lost"}, machine=machine) is with_award

    def test_out_of_range_value_dropped(self, with_award, machine):
        updated = apply_award_patch(with_award, "a1", {"declaredValue": "1e40"}, machine=machine)
        assert updated is with_award

    def test_unknown_award_dropped(self, with_award):
        assert apply_award_patch(with_award, "zz", {"prizeName": "x"}) is with_award

    def test_approved_record_dropped(self, with_award, clock):
        approved = ApprovalGate(clock=clock).approve(with_award, "Jane")
        assert apply_award_patch(approved, "a1", {"prizeName": "x"}) is approved
