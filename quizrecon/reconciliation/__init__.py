"""Reconciliation subsystem for quiz and bingo rooms.

Turns raw payment records and manual adjustments into one auditable
total, tracks each prize from declaration to final disposition, freezes
everything behind a one-way approval, and exports a tamper-evident
archive bundle:
- aggregator: payments + adjustments -> Totals
- awards: prize award state machine
- approval: one-way approval gate
- exporter / verifier: archive bundle with SHA-256 manifest
- sync: patch exchange with debounced outgoing edits
- repository: payment ledger reads and approved summary writes
"""

from .aggregator import compute_totals
from .adjustments import append_adjustment
from .approval import ApprovalGate, approve
from .awards import PrizeAwardStateMachine, sort_awards, summarize_awards
from .errors import (
    IntegrityUnavailable,
    LockedError,
    ReconciliationError,
    RenderError,
    ValidationError,
)
from .exporter import ArchiveBundle, ArchiveExporter, build_archive
from .models import (
    AdjustmentEntry,
    AdjustmentType,
    AwardMethod,
    AwardStatus,
    LeaderboardEntry,
    LedgerType,
    PaymentLedgerEntry,
    PaymentStatus,
    PlayerRecord,
    PrizeAward,
    ReasonCode,
    ReconciliationRecord,
    Totals,
)
from .patches import apply_award_patch, apply_patch
from .repository import PaymentLedgerRepository, ReconciliationRepository
from .session import ReconciliationSession
from .sync import CoalescingScheduler, ReconciliationSync
from .verifier import ArchiveVerifier, VerificationResult

__all__ = [
    "AdjustmentEntry",
    "AdjustmentType",
    "ApprovalGate",
    "ArchiveBundle",
    "ArchiveExporter",
    "ArchiveVerifier",
    "AwardMethod",
    "AwardStatus",
    "CoalescingScheduler",
    "IntegrityUnavailable",
    "LeaderboardEntry",
    "LedgerType",
    "LockedError",
    "PaymentLedgerEntry",
    "PaymentLedgerRepository",
    "PaymentStatus",
    "PlayerRecord",
    "PrizeAward",
    "PrizeAwardStateMachine",
    "ReasonCode",
    "ReconciliationError",
    "ReconciliationRecord",
    "ReconciliationRepository",
    "ReconciliationSession",
    "ReconciliationSync",
    "RenderError",
    "Totals",
    "ValidationError",
    "VerificationResult",
    "append_adjustment",
    "apply_award_patch",
    "apply_patch",
    "approve",
    "build_archive",
    "compute_totals",
    "sort_awards",
    "summarize_awards",
]
