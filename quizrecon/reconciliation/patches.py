"""Allowlist-based patch application for reconciliation records.

Every patchable field must be explicitly listed. Unknown fields are
dropped, never errors. Patch application never raises: an invalid or stale
patch is logged and the current record is returned unchanged, since the
next full snapshot rebuilds authoritative state anyway.

Two message shapes:
- record patch: shallow merge of top-level fields; ``prizeAwards`` replaces
  the whole array (legacy path)
- award patch: per-award merge of editable fields; a status change goes
  through the state machine so guards and history still apply
"""

from __future__ import annotations

from typing import Any

import bittensor as bt
from pydantic import BaseModel

from .awards import EDITABLE_AWARD_FIELDS, PrizeAwardStateMachine
from .errors import ReconciliationError
from .models import PrizeAward, ReconciliationRecord, build, field_name


# ---------------------------------------------------------------------------
# Allowlists
# ---------------------------------------------------------------------------

RECORD_PATCH_FIELDS: frozenset[str] = frozenset({
    "ledger",
    "prize_awards",
    "approved_by",
    "approved_at",
    "notes",
    "archive_generated_at",
    "archive_sha256",
    "final_leaderboard",
})

# Always writable, even on an approved record
POST_APPROVAL_FIELDS: frozenset[str] = frozenset({
    "archive_generated_at",
    "archive_sha256",
})

# Award fields owned by the state machine; ignored when they arrive in a patch
SERVER_OWNED_AWARD_FIELDS: frozenset[str] = frozenset({
    "prize_award_id",
    "status_history",
    "declared_at",
    "delivered_at",
    "collected_at",
})


def normalize_keys(model_cls: type[BaseModel], patch: dict[str, Any]) -> dict[str, Any]:
    """Rename wire keys to attribute names, dropping keys the model lacks."""
    out: dict[str, Any] = {}
    for key, value in patch.items():
        name = field_name(model_cls, key)
        if name is not None:
            out[name] = value
    return out


def allowlisted(row: dict[str, Any], allowlist: frozenset[str]) -> dict[str, Any]:
    """Filter a row to allowlisted keys. Unlike a redaction, None values stay."""
    return {k: v for k, v in row.items() if k in allowlist}


def _drop(room_id: str | None, reason: str, **extra: Any) -> None:
    bt.logging.warning({
        "recon_patch_dropped": {"room_id": room_id, "reason": reason, **extra}
    })


# ---------------------------------------------------------------------------
# Record patches
# ---------------------------------------------------------------------------


def apply_patch(
    current: ReconciliationRecord,
    patch: Any,
    *,
    notes_editable_after_approval: bool = False,
) -> ReconciliationRecord:
    """Shallow-merge ``patch`` into ``current`` and return the result.

    On an approved record only archive metadata (and notes, when configured)
    is accepted; the ledger and prize awards never change.
    """
    if not isinstance(patch, dict):
        _drop(current.room_id, "not_a_mapping")
        return current

    fields = allowlisted(normalize_keys(ReconciliationRecord, patch), RECORD_PATCH_FIELDS)
    if current.is_approved:
        allowed = POST_APPROVAL_FIELDS
        if notes_editable_after_approval:
            allowed = allowed | {"notes"}
        locked = sorted(set(fields) - allowed)
        fields = allowlisted(fields, allowed)
        if locked:
            _drop(current.room_id, "record_approved", fields=",".join(locked))

    if not fields:
        return current

    data = current.model_dump()
    data.update(fields)
    try:
        updated = build(ReconciliationRecord, data)
    except ReconciliationError as e:
        _drop(current.room_id, e.reason or "invalid", message=e.message)
        return current

    bt.logging.debug({
        "recon_patch_applied": {
            "room_id": current.room_id,
            "fields": sorted(fields),
        }
    })
    return updated


# ---------------------------------------------------------------------------
# Award patches
# ---------------------------------------------------------------------------


def apply_award_patch(
    current: ReconciliationRecord,
    prize_award_id: str,
    patch: Any,
    *,
    machine: PrizeAwardStateMachine | None = None,
    default_actor: str = "remote",
) -> ReconciliationRecord:
    """Merge a single-award patch.

    Editable fields are applied first so that a patch carrying both
    ``awardMethod`` and ``status: delivered`` passes the delivery guard.
    ``by``/``note`` in the patch annotate the resulting history entry.
    """
    if not isinstance(patch, dict):
        _drop(current.room_id, "not_a_mapping", prize_award_id=prize_award_id)
        return current
    if current.is_approved:
        _drop(current.room_id, "record_approved", prize_award_id=prize_award_id)
        return current

    award = current.find_award(prize_award_id)
    if award is None:
        _drop(current.room_id, "award_not_found", prize_award_id=prize_award_id)
        return current

    machine = machine or PrizeAwardStateMachine()
    normalized = normalize_keys(PrizeAward, patch)
    fields = allowlisted(normalized, EDITABLE_AWARD_FIELDS)
    status = normalized.get("status")
    by = patch.get("by") or patch.get("updatedBy") or default_actor
    note = patch.get("note")

    try:
        updated = current
        if fields:
            updated = machine.update_fields(updated, prize_award_id, fields)
        if status is not None and status != award.status.value and status != award.status:
            updated = machine.transition(updated, prize_award_id, status, by=by, note=note)
    except ReconciliationError as e:
        reason = e.reason or "invalid"
        _drop(current.room_id, reason, prize_award_id=prize_award_id, message=str(e))
        return current

    return updated


__all__ = [
    "POST_APPROVAL_FIELDS",
    "RECORD_PATCH_FIELDS",
    "SERVER_OWNED_AWARD_FIELDS",
    "allowlisted",
    "apply_award_patch",
    "apply_patch",
    "normalize_keys",
]
