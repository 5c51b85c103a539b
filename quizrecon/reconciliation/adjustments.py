"""Append-only adjustment ledger operations."""

from __future__ import annotations

import uuid
from typing import Any

import bittensor as bt

from .awards import Clock, ensure_unlocked, utcnow
from .errors import ValidationError
from .models import (
    AdjustmentEntry,
    AdjustmentType,
    ReasonCode,
    ReconciliationRecord,
    build,
    evolve,
)


def append_adjustment(
    record: ReconciliationRecord,
    *,
    type: AdjustmentType | str,
    amount: Any,
    created_by: str,
    reason_code: ReasonCode | str | None = None,
    note: str = "",
    method: str | None = None,
    payer_id: str | None = None,
    currency: str = "EUR",
    prize_award_id: str | None = None,
    clock: Clock | None = None,
) -> ReconciliationRecord:
    """Append a manual adjustment and return the updated record.

    Raises:
        LockedError: the record is approved.
        ValidationError: missing author, unknown linked award, or an entry
            that fails model validation (negative amount, cash_over_short
            without a cash reason).
    """
    ensure_unlocked(record, "append_adjustment")
    if not created_by or not created_by.strip():
        raise ValidationError("createdBy required", reason="created_by_required")
    if prize_award_id is not None and record.find_award(prize_award_id) is None:
        raise ValidationError(
            "prize award not found",
            reason="award_not_found",
            details={"prize_award_id": prize_award_id},
        )

    entry = build(AdjustmentEntry, {
        "id": uuid.uuid4().hex,
        "timestamp": (clock or utcnow)(),
        "type": type,
        "amount": amount,
        "reason_code": reason_code,
        "note": note or "",
        "created_by": created_by.strip(),
        "method": method,
        "payer_id": payer_id,
        "currency": currency,
        "prize_award_id": prize_award_id,
    })

    bt.logging.info({
        "recon_adjustment": {
            "room_id": record.room_id,
            "id": entry.id,
            "type": entry.type.value,
            "amount": str(entry.amount),
            "created_by": entry.created_by,
        }
    })
    return evolve(record, ledger=[*record.ledger, entry])


__all__ = ["append_adjustment"]
