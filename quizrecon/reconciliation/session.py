"""Per-room reconciliation state container.

One session owns one ReconciliationRecord for the lifetime of a room.
Operations replace ``record`` with a new immutable snapshot; there is no
process-wide store.
"""

from __future__ import annotations

from typing import Any, Iterable

import bittensor as bt

from quizrecon.base.config import ReconciliationSettings

from . import adjustments, patches
from .aggregator import compute_totals
from .approval import ApprovalGate
from .awards import Clock, PrizeAwardStateMachine, sort_awards, summarize_awards, utcnow
from .errors import ReconciliationError
from .exporter import ArchiveBundle, ArchiveExporter
from .integrity import Hasher
from .models import (
    AwardSummary,
    LeaderboardEntry,
    PaymentLedgerEntry,
    PlayerRecord,
    PrizeAward,
    ReconciliationRecord,
    Totals,
    build,
)
from .repository import PaymentLedgerRepository, ReconciliationRepository
from .store.interface import ArchiveStore


class ReconciliationSession:
    """Explicit owner of a room's reconciliation record."""

    def __init__(
        self,
        room_id: str,
        *,
        settings: ReconciliationSettings | None = None,
        entry_fee: Any = 0,
        clock: Clock | None = None,
        hasher: Hasher | None = None,
        wallet: Any = None,
        record: ReconciliationRecord | None = None,
        payment_repository: PaymentLedgerRepository | None = None,
        reconciliation_repository: ReconciliationRepository | None = None,
    ):
        self.room_id = room_id
        self.settings = settings or ReconciliationSettings()
        self.entry_fee = entry_fee
        self.clock = clock or utcnow
        self.machine = PrizeAwardStateMachine(self.clock)
        self.gate = ApprovalGate(
            notes_editable_after_approval=self.settings.notes_editable_after_approval,
            clock=self.clock,
        )
        self.exporter = ArchiveExporter(
            hasher=hasher,
            wallet=wallet,
            clock=self.clock,
            currency_code=self.settings.currency_code,
            currency_symbol=self.settings.currency_symbol,
            prefix=self.settings.archive_prefix,
            allow_draft=self.settings.allow_draft_export,
        )
        self.record = record or ReconciliationRecord(room_id=room_id)
        self.payments: list[PaymentLedgerEntry] = []
        self.players: list[PlayerRecord] = []
        self.leaderboard: list[LeaderboardEntry] = []
        self.payment_repository = payment_repository
        self.reconciliation_repository = reconciliation_repository

    # ------------------------------------------------------------------
    # Collaborator inputs
    # ------------------------------------------------------------------

    def set_payments(self, payments: Iterable[PaymentLedgerEntry]) -> None:
        self.payments = list(payments)

    def set_players(self, players: Iterable[PlayerRecord]) -> None:
        self.players = list(players)

    def set_leaderboard(self, leaderboard: Iterable[LeaderboardEntry]) -> None:
        self.leaderboard = list(leaderboard)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def is_approved(self) -> bool:
        return self.record.is_approved

    def totals(self) -> Totals:
        return compute_totals(self.payments, self.record.ledger, self.entry_fee)

    def awards(self) -> list[PrizeAward]:
        """Awards in display order."""
        return sort_awards(self.record.prize_awards)

    def award_summary(self) -> AwardSummary:
        return summarize_awards(self.record.prize_awards)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append_adjustment(self, **kwargs: Any) -> ReconciliationRecord:
        self.record = adjustments.append_adjustment(self.record, clock=self.clock, **kwargs)
        return self.record

    def declare_award(self, **kwargs: Any) -> PrizeAward:
        before = {a.prize_award_id for a in self.record.prize_awards}
        self.record = self.machine.declare(self.record, **kwargs)
        return next(a for a in self.record.prize_awards if a.prize_award_id not in before)

    def update_award_fields(self, prize_award_id: str, changes: dict[str, Any]) -> PrizeAward:
        self.record = self.machine.update_fields(self.record, prize_award_id, changes)
        return self.record.find_award(prize_award_id)

    def transition(self, prize_award_id: str, target: Any, **kwargs: Any) -> PrizeAward:
        self.record = self.machine.transition(self.record, prize_award_id, target, **kwargs)
        return self.record.find_award(prize_award_id)

    def approve(self, approver_name: str, notes: str | None = None) -> ReconciliationRecord:
        self.record = self.gate.approve(self.record, approver_name, notes)
        return self.record

    def update_notes(self, notes: str) -> ReconciliationRecord:
        self.record = self.gate.update_notes(self.record, notes)
        return self.record

    def apply_patch(self, patch: Any) -> ReconciliationRecord:
        self.record = patches.apply_patch(
            self.record,
            patch,
            notes_editable_after_approval=self.settings.notes_editable_after_approval,
        )
        return self.record

    def apply_award_patch(self, prize_award_id: str, patch: Any) -> ReconciliationRecord:
        self.record = patches.apply_award_patch(
            self.record, prize_award_id, patch, machine=self.machine,
        )
        return self.record

    def replace_record(self, snapshot: Any) -> bool:
        """Adopt a full snapshot. Invalid snapshots are logged and ignored."""
        data = dict(snapshot) if isinstance(snapshot, dict) else None
        if data is None:
            bt.logging.warning({"recon_snapshot_dropped": {"room_id": self.room_id}})
            return False
        data.setdefault("roomId", self.room_id)
        try:
            incoming = build(ReconciliationRecord, data)
        except ReconciliationError as e:
            bt.logging.warning({
                "recon_snapshot_dropped": {"room_id": self.room_id, "error": str(e)}
            })
            return False

        if not self.record.is_approved:
            self.record = incoming
            return True
        return self._merge_approved_snapshot(incoming)

    def _merge_approved_snapshot(self, incoming: ReconciliationRecord) -> bool:
        """An approved record only takes archive metadata (and notes, when configured)."""
        current = self.record
        if (
            incoming.approved_at != current.approved_at
            or incoming.approved_by != current.approved_by
            or incoming.ledger != current.ledger
            or incoming.prize_awards != current.prize_awards
        ):
            bt.logging.warning({
                "recon_snapshot_dropped": {
                    "room_id": self.room_id,
                    "reason": "record_approved",
                }
            })
            return False

        changes = {
            name: getattr(incoming, name)
            for name in patches.POST_APPROVAL_FIELDS | {"notes"}
            if getattr(incoming, name) != getattr(current, name)
        }
        if not changes:
            return False
        self.record = self.apply_patch(changes)
        return self.record is not current

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self) -> ArchiveBundle:
        """Build an archive and stamp archive metadata onto the record."""
        bundle = self.exporter.build_archive(
            self.record,
            self.totals(),
            self.players,
            self.leaderboard,
            self.payments,
        )
        self.record = patches.apply_patch(self.record, {
            "archive_generated_at": bundle.manifest.created_at,
            "archive_sha256": bundle.digest,
        })
        return bundle

    async def export_to(self, store: ArchiveStore) -> ArchiveBundle:
        bundle = self.export()
        await store.put_bundle(self.room_id, bundle)
        if self.reconciliation_repository is not None and self.is_approved:
            await self.reconciliation_repository.set_archive_metadata(
                self.room_id, bundle.manifest.created_at, bundle.digest,
            )
        return bundle

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load_payments(self, *, confirmed_only: bool = False) -> list[PaymentLedgerEntry]:
        """Refresh ``payments`` from the payment ledger repository."""
        if self.payment_repository is None:
            raise RuntimeError("no payment repository configured")
        self.payments = await self.payment_repository.list_for_room(
            self.room_id, confirmed_only=confirmed_only,
        )
        return self.payments

    async def persist(self, *, club_id: str | None = None) -> None:
        """Write the approved summary and its adjustments."""
        if self.reconciliation_repository is None:
            raise RuntimeError("no reconciliation repository configured")
        await self.reconciliation_repository.save_approved(
            self.record, self.totals(), club_id=club_id,
        )


__all__ = ["ReconciliationSession"]
