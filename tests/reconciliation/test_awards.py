"""Tests for the prize award lifecycle."""

from decimal import Decimal

import pytest

from quizrecon.reconciliation.approval import ApprovalGate
from quizrecon.reconciliation.awards import (
    ALLOWED_TRANSITIONS,
    PrizeAwardStateMachine,
    can_transition,
    mark_delivered,
    sort_awards,
    summarize_awards,
)
from quizrecon.reconciliation.errors import LockedError, ValidationError
from quizrecon.reconciliation.models import AwardMethod, AwardStatus


@pytest.fixture
def machine(clock):
    return PrizeAwardStateMachine(clock)


@pytest.fixture
def declared(machine, record):
    return machine.declare(
        record,
        prize_name="Hamper",
        by="host",
        place=1,
        declared_value="50",
        winner_player_id="p1",
        winner_name="Alice",
        prize_award_id="a1",
    )


class TestDeclare:

    def test_declare_creates_history(self, declared):
        award = declared.find_award("a1")
        assert award.status == AwardStatus.DECLARED
        assert award.declared_value == Decimal("50.00")
        assert len(award.status_history) == 1
        assert award.status_history[0].by == "host"
        assert award.declared_at == award.status_history[0].at

    def test_generated_id(self, machine, record):
        updated = machine.declare(record, prize_name="Voucher", by="host")
        assert len(updated.prize_awards) == 1
        assert len(updated.prize_awards[0].prize_award_id) == 32

    def test_duplicate_id_rejected(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.declare(declared, prize_name="Again", by="host", prize_award_id="a1")
        assert exc.value.reason == "duplicate_award"

    def test_original_record_untouched(self, record, declared):
        assert record.prize_awards == []
        assert len(declared.prize_awards) == 1


class TestTransitions:

    def test_transition_table(self):
        assert can_transition(AwardStatus.DECLARED, AwardStatus.COLLECTED)
        assert can_transition(AwardStatus.COLLECTED, AwardStatus.DELIVERED)
        assert not can_transition(AwardStatus.COLLECTED, AwardStatus.UNCLAIMED)
        assert not can_transition(AwardStatus.DELIVERED, AwardStatus.CANCELED)
        for status in AwardStatus:
            if status != AwardStatus.DECLARED:
                assert AwardStatus.DECLARED in ALLOWED_TRANSITIONS[status]

    def test_delivery_without_method_rejected(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.mark_delivered(declared, "a1", by="host", winner_confirmed=True)
        assert exc.value.reason == "award_method_required"
        assert exc.value.message == "awardMethod required"

    def test_delivery_without_confirmation_rejected(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.mark_delivered(declared, "a1", by="host", award_method="collection")
        assert exc.value.reason == "winner_not_confirmed"

    def test_rejected_transition_changes_nothing(self, machine, declared):
        with pytest.raises(ValidationError):
            machine.mark_delivered(declared, "a1", by="host")
        award = declared.find_award("a1")
        assert award.status == AwardStatus.DECLARED
        assert len(award.status_history) == 1
        assert award.award_method is None

    def test_delivery_with_fields(self, machine, declared):
        updated = machine.mark_delivered(
            declared, "a1", by="host", note="handed over",
            award_method="delivery", winner_confirmed=True,
        )
        award = updated.find_award("a1")
        assert award.status == AwardStatus.DELIVERED
        assert award.award_method == AwardMethod.DELIVERY
        assert award.winner_confirmed
        assert award.delivered_at == award.status_history[-1].at
        assert award.status_history[-1].note == "handed over"
        assert [h.status for h in award.status_history] == [
            AwardStatus.DECLARED, AwardStatus.DELIVERED,
        ]

    def test_delivery_after_field_edit(self, machine, declared):
        record = machine.update_fields(
            declared, "a1", {"awardMethod": "collection", "winnerConfirmed": True},
        )
        record = machine.mark_delivered(record, "a1", by="host")
        assert record.find_award("a1").status == AwardStatus.DELIVERED

    def test_collected_then_delivered(self, machine, declared):
        record = machine.mark_collected(declared, "a1", by="host")
        assert record.find_award("a1").collected_at is not None
        record = machine.mark_delivered(
            record, "a1", by="host", award_method="collection", winner_confirmed=True,
        )
        award = record.find_award("a1")
        assert award.status == AwardStatus.DELIVERED
        assert len(award.status_history) == 3

    def test_invalid_transition(self, machine, declared):
        record = machine.mark_unclaimed(declared, "a1", by="host")
        with pytest.raises(ValidationError) as exc:
            machine.mark_refused(record, "a1", by="host")
        assert exc.value.reason == "invalid_transition"

    def test_same_state_rejected(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.transition(declared, "a1", "declared", by="host")
        assert exc.value.reason == "invalid_transition"

    def test_reopen_clears_timestamps(self, machine, declared):
        record = machine.mark_delivered(
            declared, "a1", by="host", award_method="delivery", winner_confirmed=True,
        )
        record = machine.reopen(record, "a1", by="host", note="wrong winner")
        award = record.find_award("a1")
        assert award.status == AwardStatus.DECLARED
        assert award.delivered_at is None
        assert award.collected_at is None
        assert len(award.status_history) == 3

    def test_terminal_states(self, machine, declared):
        for mark in (machine.mark_refused, machine.mark_returned, machine.mark_canceled):
            record = mark(declared, "a1", by="host")
            assert record.find_award("a1").is_terminal

    def test_unknown_award(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.mark_collected(declared, "missing", by="host")
        assert exc.value.reason == "award_not_found"

    def test_unknown_status_value(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.transition(declared, "a1", "lost", by="host")
        assert exc.value.reason == "invalid_value"
        assert exc.value.to_dict()["reason"] == "invalid_value"

    def test_unknown_award_method(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.mark_delivered(
                declared, "a1", by="host", award_method="drone", winner_confirmed=True,
            )
        assert exc.value.reason == "invalid_value"

    def test_module_shortcut_uses_clock(self, clock, declared):
        record = mark_delivered(
            declared, "a1", by="host", clock=clock,
            award_method="collection", winner_confirmed=True,
        )
        assert record.find_award("a1").delivered_at.year == 2024


_CONFIRM = ("fields", {"awardMethod": "collection", "winnerConfirmed": True})


def _step(machine, record, step):
    kind, arg = step
    try:
        if kind == "fields":
            return machine.update_fields(record, "a1", arg)
        return machine.transition(record, "a1", arg, by="host")
    except ValidationError:
        return record


class TestTransitionSequences:

    @pytest.mark.parametrize("steps", [
        [("to", "delivered"), ("to", "collected"), ("to", "delivered")],
        [("to", "delivered"), _CONFIRM, ("to", "delivered"), ("to", "declared"), ("to", "delivered")],
        [("to", "unclaimed"), ("to", "delivered"), ("to", "declared"), _CONFIRM, ("to", "delivered")],
        [("fields", {"awardMethod": "delivery"}), ("to", "delivered"), ("to", "refused"),
         ("to", "declared"), ("fields", {"winnerConfirmed": True}), ("to", "delivered")],
        [("to", "canceled"), ("to", "collected"), ("to", "declared"), ("to", "declared"),
         ("to", "collected"), ("to", "returned")],
        [("to", "lost"), _CONFIRM, ("to", "collected"), ("to", "delivered"), ("to", "delivered")],
    ])
    def test_history_and_delivery_guard_hold_after_every_step(self, machine, declared, steps):
        record = declared
        previous_len = len(record.find_award("a1").status_history)
        for step in steps:
            record = _step(machine, record, step)
            award = record.find_award("a1")

            assert len(award.status_history) >= previous_len
            assert award.status_history[-1].status == award.status
            if award.status == AwardStatus.DELIVERED:
                assert award.award_method is not None
                assert award.winner_confirmed
            previous_len = len(award.status_history)


class TestUpdateFields:

    def test_camel_case_keys(self, machine, declared):
        record = machine.update_fields(declared, "a1", {"prizeName": "Big Hamper", "place": 2})
        award = record.find_award("a1")
        assert award.prize_name == "Big Hamper"
        assert award.place == 2

    def test_lifecycle_fields_blocked(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.update_fields(declared, "a1", {"status": "delivered"})
        assert exc.value.reason == "field_not_editable"

    def test_negative_value_rejected(self, machine, declared):
        with pytest.raises(ValidationError) as exc:
            machine.update_fields(declared, "a1", {"declaredValue": "-5"})
        assert exc.value.reason == "invalid_value"

    def test_unconfirming_delivered_award_rejected(self, machine, declared):
        record = machine.mark_delivered(
            declared, "a1", by="host", award_method="delivery", winner_confirmed=True,
        )
        with pytest.raises(ValidationError):
            machine.update_fields(record, "a1", {"winnerConfirmed": False})


class TestLocking:

    def test_approved_record_is_frozen(self, machine, declared, clock):
        approved = ApprovalGate(clock=clock).approve(declared, "Jane")
        with pytest.raises(LockedError):
            machine.mark_collected(approved, "a1", by="host")
        with pytest.raises(LockedError):
            machine.declare(approved, prize_name="Late", by="host")
        with pytest.raises(LockedError):
            machine.update_fields(approved, "a1", {"prizeName": "x"})


class TestViews:

    def test_sort_awards(self, machine, record):
        for place, name, award_id in [(None, "Raffle", "r"), (2, "Wine", "w"), (1, "Hamper", "h"), (2, "apple", "a")]:
            record = machine.declare(
                record, prize_name=name, by="host", place=place, prize_award_id=award_id,
            )
        assert [a.prize_award_id for a in sort_awards(record.prize_awards)] == ["h", "a", "w", "r"]

    def test_summarize_awards(self, machine, record):
        record = machine.declare(record, prize_name="A", by="h", declared_value="10", prize_award_id="1")
        record = machine.declare(record, prize_name="B", by="h", declared_value="20", prize_award_id="2")
        record = machine.declare(record, prize_name="C", by="h", declared_value="5", prize_award_id="3")
        record = machine.declare(record, prize_name="D", by="h", prize_award_id="4")
        record = machine.mark_collected(record, "1", by="h")
        record = machine.mark_refused(record, "2", by="h")
        record = machine.mark_unclaimed(record, "3", by="h")

        summary = summarize_awards(record.prize_awards)
        assert summary.total_value == Decimal("35.00")
        assert summary.delivered_count == 1
        assert summary.delivered_value == Decimal("10.00")
        assert summary.unclaimed_count == 2
        assert summary.unclaimed_value == Decimal("25.00")
        assert summary.by_status["declared"].count == 1
        assert summary.by_status["declared"].total == Decimal("0.00")
