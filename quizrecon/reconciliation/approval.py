"""Approval gate: the one-way switch from draft to finalized record.

There is no un-approve. Re-approval is rejected, not silently accepted.
"""

from __future__ import annotations

import bittensor as bt

from .awards import Clock, utcnow
from .errors import LockedError, ValidationError
from .models import ReconciliationRecord, evolve


class ApprovalGate:
    """Approves records and enforces the post-approval notes policy."""

    def __init__(
        self,
        notes_editable_after_approval: bool = False,
        clock: Clock | None = None,
    ):
        self.notes_editable_after_approval = notes_editable_after_approval
        self.clock = clock or utcnow

    def approve(
        self,
        record: ReconciliationRecord,
        approver_name: str,
        notes: str | None = None,
    ) -> ReconciliationRecord:
        """Freeze the ledger and prize awards under a named approver.

        Raises:
            ValidationError: empty approver name (reason ``approver_required``)
                or record already approved (reason ``already_approved``).
        """
        name = (approver_name or "").strip()
        if not name:
            raise ValidationError("approverName required", reason="approver_required")
        if record.is_approved:
            raise ValidationError(
                "reconciliation already approved",
                reason="already_approved",
                details={
                    "approved_by": record.approved_by,
                    "approved_at": record.approved_at.isoformat(),
                },
            )

        changes = {"approved_by": name, "approved_at": self.clock()}
        if notes is not None:
            changes["notes"] = notes
        approved = evolve(record, **changes)

        bt.logging.info({
            "recon_approval": {
                "room_id": record.room_id,
                "approved_by": name,
                "approved_at": approved.approved_at.isoformat(),
                "adjustments": len(record.ledger),
                "prize_awards": len(record.prize_awards),
            }
        })
        return approved

    def notes_editable(self, record: ReconciliationRecord) -> bool:
        return not record.is_approved or self.notes_editable_after_approval

    def update_notes(self, record: ReconciliationRecord, notes: str) -> ReconciliationRecord:
        if not self.notes_editable(record):
            raise LockedError(
                "notes are locked after approval",
                reason="record_approved",
                details={"action": "update_notes"},
            )
        return evolve(record, notes=notes or "")


def approve(
    record: ReconciliationRecord,
    approver_name: str,
    notes: str | None = None,
    *,
    clock: Clock | None = None,
) -> ReconciliationRecord:
    return ApprovalGate(clock=clock).approve(record, approver_name, notes)


__all__ = ["ApprovalGate", "approve"]
