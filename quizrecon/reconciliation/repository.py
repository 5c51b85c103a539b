"""Database collaborators for payment ledger reads and approved summaries.

Both repositories take an async database facade exposing
``read(query, params=..., mappings=True)`` and ``write(query, params=...)``.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import bittensor as bt
from sqlalchemy import text

from .errors import ValidationError
from .models import AdjustmentEntry, PaymentLedgerEntry, ReconciliationRecord, Totals

# ---------------------------------------------------------------------------
# SQL queries
# ---------------------------------------------------------------------------

_SELECT_PAYMENTS = text("""
    SELECT
        id, player_id, player_name, ledger_type, amount, currency, status,
        payment_method, payment_reference, is_late, ticket_id, extra_id,
        confirmed_at
    FROM quiz_payment_ledger
    WHERE room_id = :room_id
    ORDER BY created_at, id
""")

_SELECT_PAYMENT_STATUS_SUMMARY = text("""
    SELECT
        payment_method,
        status,
        COUNT(*) AS count,
        SUM(amount) AS total_amount
    FROM quiz_payment_ledger
    WHERE room_id = :room_id
    GROUP BY payment_method, status
    ORDER BY payment_method, status
""")

_UPSERT_RECONCILIATION = text("""
    INSERT INTO quiz_reconciliation (
        room_id, club_id,
        starting_entry_fees, starting_extras, starting_total,
        adjustments_net, final_total,
        approved_by, approved_at, notes, prize_awards
    ) VALUES (
        :room_id, :club_id,
        :starting_entry_fees, :starting_extras, :starting_total,
        :adjustments_net, :final_total,
        :approved_by, :approved_at, :notes, :prize_awards
    )
    ON CONFLICT (room_id) DO UPDATE SET
        starting_entry_fees = EXCLUDED.starting_entry_fees,
        starting_extras = EXCLUDED.starting_extras,
        starting_total = EXCLUDED.starting_total,
        adjustments_net = EXCLUDED.adjustments_net,
        final_total = EXCLUDED.final_total,
        approved_by = EXCLUDED.approved_by,
        approved_at = EXCLUDED.approved_at,
        notes = EXCLUDED.notes,
        prize_awards = EXCLUDED.prize_awards
""")

_DELETE_ADJUSTMENTS = text(
    "DELETE FROM quiz_reconciliation_adjustments WHERE room_id = :room_id"
)

_INSERT_ADJUSTMENT = text("""
    INSERT INTO quiz_reconciliation_adjustments (
        id, room_id, ts, adjustment_type, amount, currency, payment_method,
        reason_code, payer_id, note, created_by, prize_award_id
    ) VALUES (
        :id, :room_id, :ts, :adjustment_type, :amount, :currency, :payment_method,
        :reason_code, :payer_id, :note, :created_by, :prize_award_id
    )
""")

_SELECT_RECONCILIATION = text("""
    SELECT
        room_id, club_id, starting_entry_fees, starting_extras, starting_total,
        adjustments_net, final_total, approved_by, approved_at, notes,
        archive_generated_at, archive_sha256
    FROM quiz_reconciliation
    WHERE room_id = :room_id
""")

_SELECT_ADJUSTMENTS = text("""
    SELECT
        id, ts, adjustment_type, amount, currency, payment_method,
        reason_code, payer_id, note, created_by, prize_award_id
    FROM quiz_reconciliation_adjustments
    WHERE room_id = :room_id
    ORDER BY ts, id
""")

_UPDATE_ARCHIVE_METADATA = text("""
    UPDATE quiz_reconciliation
    SET archive_generated_at = :generated_at, archive_sha256 = :sha256
    WHERE room_id = :room_id
""")


def _opt_str(val: Any) -> str | None:
    return None if val is None else str(val)


class PaymentLedgerRepository:
    """Read-only access to recorded payments."""

    def __init__(self, database: Any):
        self.database = database

    async def list_for_room(
        self, room_id: str, *, confirmed_only: bool = False,
    ) -> list[PaymentLedgerEntry]:
        rows = await self.database.read(
            _SELECT_PAYMENTS, params={"room_id": room_id}, mappings=True,
        )
        payments = [
            PaymentLedgerEntry(
                id=_opt_str(r["id"]),
                player_id=_opt_str(r.get("player_id")),
                player_name=r.get("player_name"),
                ledger_type=r["ledger_type"],
                amount=r["amount"],
                currency=r.get("currency") or "EUR",
                status=r["status"],
                method=r.get("payment_method") or "unknown",
                payment_reference=r.get("payment_reference"),
                is_late=bool(r.get("is_late")),
                ticket_id=_opt_str(r.get("ticket_id")),
                extra_id=_opt_str(r.get("extra_id")),
                confirmed_at=r.get("confirmed_at"),
            )
            for r in rows
        ]
        if confirmed_only:
            payments = [p for p in payments if p.is_confirmed]
        return payments

    async def status_summary(self, room_id: str) -> list[dict[str, Any]]:
        """Per method/status counts and totals, confirmed or not."""
        rows = await self.database.read(
            _SELECT_PAYMENT_STATUS_SUMMARY, params={"room_id": room_id}, mappings=True,
        )
        return [dict(r) for r in rows]


class ReconciliationRepository:
    """Persists approved summaries, their adjustments and archive metadata."""

    def __init__(self, database: Any):
        self.database = database

    async def save_approved(
        self,
        record: ReconciliationRecord,
        totals: Totals,
        *,
        club_id: str | None = None,
    ) -> None:
        """Upsert the approved summary and replace its adjustment rows.

        Raises:
            ValidationError: the record has no room or is not approved.
        """
        if not record.room_id:
            raise ValidationError("roomId required", reason="missing_field")
        if not record.is_approved:
            raise ValidationError(
                "only approved reconciliations are persisted",
                reason="not_approved",
                details={"room_id": record.room_id},
            )

        await self.database.write(_UPSERT_RECONCILIATION, params={
            "room_id": record.room_id,
            "club_id": club_id,
            "starting_entry_fees": totals.total_entry_received,
            "starting_extras": totals.total_extras_amount,
            "starting_total": totals.starting_received,
            "adjustments_net": totals.net_adjustments,
            "final_total": totals.reconciled_total,
            "approved_by": record.approved_by,
            "approved_at": record.approved_at,
            "notes": record.notes or None,
            "prize_awards": json.dumps(
                [a.to_wire() for a in record.prize_awards], sort_keys=True,
            ),
        })

        await self.database.write(_DELETE_ADJUSTMENTS, params={"room_id": record.room_id})
        for adj in record.ledger:
            await self.database.write(_INSERT_ADJUSTMENT, params={
                "id": adj.id,
                "room_id": record.room_id,
                "ts": adj.timestamp,
                "adjustment_type": adj.type.value,
                "amount": adj.amount,
                "currency": adj.currency,
                "payment_method": adj.method,
                "reason_code": adj.reason_code.value if adj.reason_code else None,
                "payer_id": adj.payer_id,
                "note": adj.note or None,
                "created_by": adj.created_by,
                "prize_award_id": adj.prize_award_id,
            })

        bt.logging.info({
            "recon_saved": {
                "room_id": record.room_id,
                "final_total": str(totals.reconciled_total),
                "adjustments": len(record.ledger),
            }
        })

    async def load_summary(self, room_id: str) -> dict[str, Any] | None:
        rows = await self.database.read(
            _SELECT_RECONCILIATION, params={"room_id": room_id}, mappings=True,
        )
        return dict(rows[0]) if rows else None

    async def load_adjustments(self, room_id: str) -> list[AdjustmentEntry]:
        rows = await self.database.read(
            _SELECT_ADJUSTMENTS, params={"room_id": room_id}, mappings=True,
        )
        return [
            AdjustmentEntry(
                id=str(r["id"]),
                timestamp=r["ts"],
                type=r["adjustment_type"],
                amount=r["amount"],
                currency=r.get("currency") or "EUR",
                method=r.get("payment_method"),
                reason_code=r.get("reason_code"),
                payer_id=_opt_str(r.get("payer_id")),
                note=r.get("note") or "",
                created_by=r["created_by"],
                prize_award_id=r.get("prize_award_id"),
            )
            for r in rows
        ]

    async def set_archive_metadata(
        self, room_id: str, generated_at: datetime, sha256: str,
    ) -> None:
        await self.database.write(_UPDATE_ARCHIVE_METADATA, params={
            "room_id": room_id,
            "generated_at": generated_at,
            "sha256": sha256,
        })


__all__ = ["PaymentLedgerRepository", "ReconciliationRepository"]
