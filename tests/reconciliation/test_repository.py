"""Tests for the payment ledger and reconciliation repositories."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from quizrecon.reconciliation.adjustments import append_adjustment
from quizrecon.reconciliation.aggregator import compute_totals
from quizrecon.reconciliation.approval import approve
from quizrecon.reconciliation.awards import PrizeAwardStateMachine
from quizrecon.reconciliation.errors import ValidationError
from quizrecon.reconciliation.models import AdjustmentType
from quizrecon.reconciliation.repository import PaymentLedgerRepository, ReconciliationRepository

T0 = datetime(2024, 5, 1, 20, 0, tzinfo=timezone.utc)


def _payment_row(**overrides):
    row = {
        "id": 1,
        "player_id": "p1",
        "player_name": "Alice",
        "ledger_type": "entry_fee",
        "amount": Decimal("10.00"),
        "currency": "EUR",
        "status": "confirmed",
        "payment_method": "cash",
        "payment_reference": None,
        "is_late": 0,
        "ticket_id": None,
        "extra_id": None,
        "confirmed_at": T0,
    }
    row.update(overrides)
    return row


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.read = AsyncMock(return_value=[])
    db.write = AsyncMock(return_value=None)
    return db


class TestPaymentLedgerRepository:

    @pytest.mark.asyncio
    async def test_maps_rows(self, mock_db):
        mock_db.read.return_value = [
            _payment_row(),
            _payment_row(id=2, player_id="p2", status="claimed", payment_method=None, is_late=1),
        ]
        payments = await PaymentLedgerRepository(mock_db).list_for_room("ROOM1")

        assert len(payments) == 2
        assert payments[0].id == "1"
        assert payments[0].method == "cash"
        assert payments[0].amount == Decimal("10.00")
        assert payments[1].method == "unknown"
        assert payments[1].is_late is True
        _, kwargs = mock_db.read.call_args
        assert kwargs["params"] == {"room_id": "ROOM1"}
        assert kwargs["mappings"] is True

    @pytest.mark.asyncio
    async def test_confirmed_only(self, mock_db):
        mock_db.read.return_value = [_payment_row(), _payment_row(id=2, status="expected")]
        payments = await PaymentLedgerRepository(mock_db).list_for_room("ROOM1", confirmed_only=True)
        assert [p.id for p in payments] == ["1"]

    @pytest.mark.asyncio
    async def test_status_summary(self, mock_db):
        mock_db.read.return_value = [
            {"payment_method": "cash", "status": "confirmed", "count": 2, "total_amount": Decimal("20")},
        ]
        summary = await PaymentLedgerRepository(mock_db).status_summary("ROOM1")
        assert summary[0]["count"] == 2


class TestReconciliationRepository:

    def _approved(self, record, clock):
        record = append_adjustment(record, type="fee", amount="1.50", created_by="host", clock=clock)
        record = append_adjustment(
            record, type="cash_over_short", amount="0.20", reason_code="cash_short",
            created_by="host", note="till count", clock=clock,
        )
        record = PrizeAwardStateMachine(clock).declare(
            record, prize_name="Hamper", by="host", prize_award_id="a1",
        )
        return approve(record, "Jane", clock=clock)

    @pytest.mark.asyncio
    async def test_save_approved(self, mock_db, record, clock, example_payments):
        approved = self._approved(record, clock)
        totals = compute_totals(example_payments, approved.ledger, 10)

        await ReconciliationRepository(mock_db).save_approved(approved, totals, club_id="club-9")

        # upsert + delete + one insert per adjustment
        assert mock_db.write.await_count == 4
        upsert_params = mock_db.write.call_args_list[0].kwargs["params"]
        assert upsert_params["room_id"] == "ROOM1"
        assert upsert_params["club_id"] == "club-9"
        assert upsert_params["starting_total"] == Decimal("22.00")
        assert upsert_params["adjustments_net"] == Decimal("-1.70")
        assert upsert_params["final_total"] == Decimal("20.30")
        assert upsert_params["approved_by"] == "Jane"
        assert upsert_params["notes"] is None
        assert json.loads(upsert_params["prize_awards"])[0]["prizeAwardId"] == "a1"

        insert_params = mock_db.write.call_args_list[3].kwargs["params"]
        assert insert_params["adjustment_type"] == "cash_over_short"
        assert insert_params["reason_code"] == "cash_short"
        assert insert_params["note"] == "till count"

    @pytest.mark.asyncio
    async def test_draft_not_saved(self, mock_db, record):
        with pytest.raises(ValidationError) as exc:
            await ReconciliationRepository(mock_db).save_approved(record, compute_totals([], [], 0))
        assert exc.value.reason == "not_approved"
        mock_db.write.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_summary(self, mock_db):
        assert await ReconciliationRepository(mock_db).load_summary("ROOM1") is None
        mock_db.read.return_value = [{"room_id": "ROOM1", "final_total": Decimal("20.50")}]
        summary = await ReconciliationRepository(mock_db).load_summary("ROOM1")
        assert summary["final_total"] == Decimal("20.50")

    @pytest.mark.asyncio
    async def test_load_adjustments(self, mock_db):
        mock_db.read.return_value = [{
            "id": 7,
            "ts": T0,
            "adjustment_type": "refund",
            "amount": Decimal("3.00"),
            "currency": None,
            "payment_method": "cash",
            "reason_code": "refund",
            "payer_id": 42,
            "note": None,
            "created_by": "host",
            "prize_award_id": None,
        }]
        adjustments = await ReconciliationRepository(mock_db).load_adjustments("ROOM1")
        assert adjustments[0].id == "7"
        assert adjustments[0].type == AdjustmentType.REFUND
        assert adjustments[0].payer_id == "42"
        assert adjustments[0].currency == "EUR"
        assert adjustments[0].note == ""

    @pytest.mark.asyncio
    async def test_set_archive_metadata(self, mock_db):
        await ReconciliationRepository(mock_db).set_archive_metadata("ROOM1", T0, "ab" * 32)
        params = mock_db.write.call_args.kwargs["params"]
        assert params == {"room_id": "ROOM1", "generated_at": T0, "sha256": "ab" * 32}
