"""Prize award lifecycle.

declared -> collected | delivered | unclaimed | refused | returned | canceled
collected -> delivered | returned | canceled
any non-declared -> declared (reopen)

Entering ``delivered`` requires an award method and a confirmed winner.
Rejected transitions change nothing: no status change, no history entry.
Nothing moves once the parent record is approved.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable

import bittensor as bt

from .errors import LockedError, ValidationError
from .models import (
    AwardMethod,
    AwardStatus,
    AwardSummary,
    PrizeAward,
    ReconciliationRecord,
    StatusHistoryEntry,
    TypeTally,
    evolve,
    field_name,
)
from .money import ZERO

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


ALLOWED_TRANSITIONS: dict[AwardStatus, frozenset[AwardStatus]] = {
    AwardStatus.DECLARED: frozenset({
        AwardStatus.COLLECTED,
        AwardStatus.DELIVERED,
        AwardStatus.UNCLAIMED,
        AwardStatus.REFUSED,
        AwardStatus.RETURNED,
        AwardStatus.CANCELED,
    }),
    AwardStatus.COLLECTED: frozenset({
        AwardStatus.DELIVERED,
        AwardStatus.RETURNED,
        AwardStatus.CANCELED,
        AwardStatus.DECLARED,
    }),
    AwardStatus.DELIVERED: frozenset({AwardStatus.DECLARED}),
    AwardStatus.UNCLAIMED: frozenset({AwardStatus.DECLARED}),
    AwardStatus.REFUSED: frozenset({AwardStatus.DECLARED}),
    AwardStatus.RETURNED: frozenset({AwardStatus.DECLARED}),
    AwardStatus.CANCELED: frozenset({AwardStatus.DECLARED}),
}

# Fields an operator may edit outside of a transition
EDITABLE_AWARD_FIELDS: frozenset[str] = frozenset({
    "place",
    "prize_name",
    "declared_value",
    "sponsor",
    "winner_player_id",
    "winner_name",
    "award_method",
    "award_reference",
    "award_notes",
    "winner_confirmed",
})


def _coerce(enum_cls, value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(
            f"unknown {field}: {value!r}",
            reason="invalid_value",
            details={"field": field},
        ) from e


def can_transition(current: AwardStatus, target: AwardStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_delivery_guard(award: PrizeAward) -> None:
    """Raise ValidationError naming the first missing delivery precondition."""
    if award.award_method is None:
        raise ValidationError(
            "awardMethod required",
            reason="award_method_required",
            details={"prize_award_id": award.prize_award_id},
        )
    if not award.winner_confirmed:
        raise ValidationError(
            "winnerConfirmed required",
            reason="winner_not_confirmed",
            details={"prize_award_id": award.prize_award_id},
        )


def ensure_unlocked(record: ReconciliationRecord, action: str) -> None:
    if record.is_approved:
        raise LockedError(
            "reconciliation is approved",
            reason="record_approved",
            details={"action": action, "approved_by": record.approved_by},
        )


def sort_awards(awards: Iterable[PrizeAward]) -> list[PrizeAward]:
    """Display order: place ascending (missing last), then prize name."""
    return sorted(
        awards,
        key=lambda a: (
            a.place is None,
            a.place if a.place is not None else 0,
            (a.prize_name or "").casefold(),
        ),
    )


def summarize_awards(awards: Iterable[PrizeAward]) -> AwardSummary:
    """Per-status counts and values.

    ``delivered`` includes collected awards; ``unclaimed`` includes refused.
    """
    by_status: dict[str, list] = {}
    total = ZERO
    delivered = [0, ZERO]
    unclaimed = [0, ZERO]

    for award in awards:
        value = award.value
        total += value
        tally = by_status.setdefault(award.status.value, [0, ZERO])
        tally[0] += 1
        tally[1] += value
        if award.status in (AwardStatus.DELIVERED, AwardStatus.COLLECTED):
            delivered[0] += 1
            delivered[1] += value
        elif award.status in (AwardStatus.UNCLAIMED, AwardStatus.REFUSED):
            unclaimed[0] += 1
            unclaimed[1] += value

    return AwardSummary(
        by_status={
            status: TypeTally(count=count, total=value)
            for status, (count, value) in by_status.items()
        },
        total_value=total,
        delivered_count=delivered[0],
        delivered_value=delivered[1],
        unclaimed_count=unclaimed[0],
        unclaimed_value=unclaimed[1],
    )


class PrizeAwardStateMachine:
    """Owns award transitions for one reconciliation record at a time.

    Every method takes the current record and returns a new one; records
    are never mutated in place.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or utcnow

    # ------------------------------------------------------------------
    # Creation and field edits
    # ------------------------------------------------------------------

    def declare(
        self,
        record: ReconciliationRecord,
        *,
        prize_name: str,
        by: str,
        place: int | None = None,
        declared_value: Decimal | str | float | None = None,
        sponsor: str | None = None,
        winner_player_id: str | None = None,
        winner_name: str | None = None,
        prize_award_id: str | None = None,
        note: str | None = None,
    ) -> ReconciliationRecord:
        """Add a new award in ``declared`` state with its first history entry."""
        ensure_unlocked(record, "declare_award")
        award_id = prize_award_id or uuid.uuid4().hex
        if record.find_award(award_id) is not None:
            raise ValidationError(
                "prizeAwardId already exists",
                reason="duplicate_award",
                details={"prize_award_id": award_id},
            )

        now = self.clock()
        award = PrizeAward(
            prize_award_id=award_id,
            place=place,
            prize_name=prize_name,
            declared_value=declared_value,
            sponsor=sponsor,
            winner_player_id=winner_player_id,
            winner_name=winner_name,
            declared_at=now,
            status_history=[
                StatusHistoryEntry(status=AwardStatus.DECLARED, at=now, by=by, note=note),
            ],
        )
        bt.logging.info({
            "recon_award_declared": {
                "room_id": record.room_id,
                "prize_award_id": award_id,
                "place": place,
            }
        })
        return evolve(record, prize_awards=[*record.prize_awards, award])

    def update_fields(
        self,
        record: ReconciliationRecord,
        prize_award_id: str,
        changes: dict[str, Any],
    ) -> ReconciliationRecord:
        """Edit non-lifecycle fields of an award.

        Raises:
            LockedError: the record is approved.
            ValidationError: unknown award, a lifecycle field in ``changes``,
                or a result that breaks an award invariant.
        """
        ensure_unlocked(record, "update_award_fields")
        award = self._get(record, prize_award_id)

        normalized = {field_name(PrizeAward, k) or k: v for k, v in changes.items()}
        blocked = sorted(set(normalized) - EDITABLE_AWARD_FIELDS)
        if blocked:
            raise ValidationError(
                "fields are not editable",
                reason="field_not_editable",
                details={"fields": ",".join(blocked)},
            )
        if not normalized:
            return record

        updated = evolve(award, **normalized)
        return self._replace(record, updated)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        record: ReconciliationRecord,
        prize_award_id: str,
        target: AwardStatus | str,
        *,
        by: str,
        note: str | None = None,
        award_method: AwardMethod | str | None = None,
        winner_confirmed: bool | None = None,
    ) -> ReconciliationRecord:
        """Move an award to ``target`` and append a history entry.

        ``award_method`` and ``winner_confirmed`` may be supplied together
        with the transition; they are applied only if it is accepted.
        """
        ensure_unlocked(record, "transition")
        award = self._get(record, prize_award_id)
        target = _coerce(AwardStatus, target, "status")

        if not can_transition(award.status, target):
            self._log_rejected(record, award, target, "invalid_transition")
            raise ValidationError(
                f"cannot move award from '{award.status.value}' to '{target.value}'",
                reason="invalid_transition",
                details={"prize_award_id": prize_award_id},
            )

        changes: dict[str, Any] = {}
        if award_method is not None:
            changes["award_method"] = _coerce(AwardMethod, award_method, "awardMethod")
        if winner_confirmed is not None:
            changes["winner_confirmed"] = winner_confirmed
        candidate = award.model_copy(update=changes) if changes else award

        if target == AwardStatus.DELIVERED:
            try:
                check_delivery_guard(candidate)
            except ValidationError as e:
                self._log_rejected(record, award, target, e.reason)
                raise

        now = self.clock()
        changes["status"] = target
        changes["status_history"] = [
            *award.status_history,
            StatusHistoryEntry(status=target, at=now, by=by, note=note),
        ]
        if target == AwardStatus.DELIVERED:
            changes["delivered_at"] = now
        elif target == AwardStatus.COLLECTED:
            changes["collected_at"] = now
        elif target == AwardStatus.DECLARED:
            changes["delivered_at"] = None
            changes["collected_at"] = None

        updated = evolve(award, **changes)
        bt.logging.info({
            "recon_award_transition": {
                "room_id": record.room_id,
                "prize_award_id": prize_award_id,
                "from": award.status.value,
                "to": target.value,
                "by": by,
            }
        })
        return self._replace(record, updated)

    def mark_collected(self, record, prize_award_id, *, by, note=None):
        return self.transition(record, prize_award_id, AwardStatus.COLLECTED, by=by, note=note)

    def mark_delivered(
        self,
        record,
        prize_award_id,
        *,
        by,
        note=None,
        award_method=None,
        winner_confirmed=None,
    ):
        return self.transition(
            record,
            prize_award_id,
            AwardStatus.DELIVERED,
            by=by,
            note=note,
            award_method=award_method,
            winner_confirmed=winner_confirmed,
        )

    def mark_unclaimed(self, record, prize_award_id, *, by, note=None):
        return self.transition(record, prize_award_id, AwardStatus.UNCLAIMED, by=by, note=note)

    def mark_refused(self, record, prize_award_id, *, by, note=None):
        return self.transition(record, prize_award_id, AwardStatus.REFUSED, by=by, note=note)

    def mark_returned(self, record, prize_award_id, *, by, note=None):
        return self.transition(record, prize_award_id, AwardStatus.RETURNED, by=by, note=note)

    def mark_canceled(self, record, prize_award_id, *, by, note=None):
        return self.transition(record, prize_award_id, AwardStatus.CANCELED, by=by, note=note)

    def reopen(self, record, prize_award_id, *, by, note=None):
        """Move a settled award back to ``declared`` as a correction."""
        return self.transition(record, prize_award_id, AwardStatus.DECLARED, by=by, note=note)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get(record: ReconciliationRecord, prize_award_id: str) -> PrizeAward:
        award = record.find_award(prize_award_id)
        if award is None:
            raise ValidationError(
                "prize award not found",
                reason="award_not_found",
                details={"prize_award_id": prize_award_id},
            )
        return award

    @staticmethod
    def _replace(record: ReconciliationRecord, award: PrizeAward) -> ReconciliationRecord:
        awards = [
            award if a.prize_award_id == award.prize_award_id else a
            for a in record.prize_awards
        ]
        return record.model_copy(update={"prize_awards": awards})

    @staticmethod
    def _log_rejected(record, award, target, reason) -> None:
        bt.logging.warning({
            "recon_award_rejected": {
                "room_id": record.room_id,
                "prize_award_id": award.prize_award_id,
                "from": award.status.value,
                "to": target.value,
                "reason": reason,
            }
        })


# ---------------------------------------------------------------------------
# Module-level shortcuts
# ---------------------------------------------------------------------------


def declare_award(record, *, clock: Clock | None = None, **kwargs):
    return PrizeAwardStateMachine(clock).declare(record, **kwargs)


def update_award_fields(record, prize_award_id, changes):
    return PrizeAwardStateMachine().update_fields(record, prize_award_id, changes)


def mark_collected(record, prize_award_id, *, by, note=None, clock=None):
    return PrizeAwardStateMachine(clock).mark_collected(record, prize_award_id, by=by, note=note)


def mark_delivered(record, prize_award_id, *, by, note=None, clock=None, **changes):
    return PrizeAwardStateMachine(clock).mark_delivered(
        record, prize_award_id, by=by, note=note, **changes,
    )


def mark_unclaimed(record, prize_award_id, *, by, note=None, clock=None):
    return PrizeAwardStateMachine(clock).mark_unclaimed(record, prize_award_id, by=by, note=note)


def mark_refused(record, prize_award_id, *, by, note=None, clock=None):
    return PrizeAwardStateMachine(clock).mark_refused(record, prize_award_id, by=by, note=note)


def mark_returned(record, prize_award_id, *, by, note=None, clock=None):
    return PrizeAwardStateMachine(clock).mark_returned(record, prize_award_id, by=by, note=note)


def mark_canceled(record, prize_award_id, *, by, note=None, clock=None):
    return PrizeAwardStateMachine(clock).mark_canceled(record, prize_award_id, by=by, note=note)


def reopen(record, prize_award_id, *, by, note=None, clock=None):
    return PrizeAwardStateMachine(clock).reopen(record, prize_award_id, by=by, note=note)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "Clock",
    "EDITABLE_AWARD_FIELDS",
    "PrizeAwardStateMachine",
    "can_transition",
    "check_delivery_guard",
    "declare_award",
    "ensure_unlocked",
    "mark_canceled",
    "mark_collected",
    "mark_delivered",
    "mark_refused",
    "mark_returned",
    "mark_unclaimed",
    "reopen",
    "sort_awards",
    "summarize_awards",
    "update_award_fields",
    "utcnow",
]
