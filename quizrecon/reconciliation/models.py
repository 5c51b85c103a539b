"""Pydantic models for the reconciliation record and its derived views.

Stored records:
- PaymentLedgerEntry: a money movement recorded by an external payment flow
- AdjustmentEntry: a manual correction layered on top of raw payments
- PrizeAward: one prize assigned to one winner, with its status history
- ReconciliationRecord: the per-room aggregate root

Derived views (never stored): Totals, AwardSummary.

Wire names are camelCase; Python attributes are snake_case. Both spellings
are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .money import to_money


# ---------------------------------------------------------------------------
# Schema version - bump on breaking changes to the archive format
# ---------------------------------------------------------------------------

ARCHIVE_SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Shared field types
# ---------------------------------------------------------------------------

Money = Annotated[Decimal, BeforeValidator(to_money)]
NonNegativeMoney = Annotated[Decimal, BeforeValidator(to_money), Field(ge=0)]


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _sponsor_name(value: Any) -> Any:
    # Sponsors arrive either as a plain name or as {"name": ...}
    if isinstance(value, dict):
        value = value.get("name")
    return _blank_to_none(value)


class WireModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class FrozenWireModel(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


def field_name(model_cls: type[BaseModel], key: str) -> str | None:
    """Map a wire key (camelCase) or attribute name to the attribute name."""
    if key in model_cls.model_fields:
        return key
    for attr, info in model_cls.model_fields.items():
        if info.alias == key:
            return attr
    return None


def build(model_cls: type[BaseModel], data: dict[str, Any]) -> Any:
    """Validate ``data`` into ``model_cls``, raising our ValidationError."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        errors = e.errors()
        first = errors[0] if errors else {}
        raise ValidationError(
            first.get("msg", str(e)),
            reason="invalid_value",
            details={"model": model_cls.__name__, "errors": e.error_count()},
        ) from e


def evolve(model: BaseModel, **changes: Any) -> Any:
    """Copy a model with changes applied, re-running every validator.

    ``model_copy(update=...)`` skips validation, which would let a broken
    invariant slip through.
    """
    data = model.model_dump()
    data.update(changes)
    return build(type(model), data)


# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------


class LedgerType(str, Enum):
    ENTRY_FEE = "entry_fee"
    EXTRA_PURCHASE = "extra_purchase"


class PaymentStatus(str, Enum):
    EXPECTED = "expected"
    CLAIMED = "claimed"
    CONFIRMED = "confirmed"


class AdjustmentType(str, Enum):
    RECEIVED = "received"
    REFUND = "refund"
    FEE = "fee"
    CASH_OVER_SHORT = "cash_over_short"
    OTHER = "other"
    PRIZE_PAYOUT = "prize_payout"


class ReasonCode(str, Enum):
    """Why an adjustment was booked. Only cash_over/cash_short affect totals."""

    COMPLIMENTARY = "complimentary"
    CASH_OVER = "cash_over"
    CASH_SHORT = "cash_short"
    LATE_PAYMENT = "late_payment"
    REFUND = "refund"
    PRIZE_AWARD_DELIVERED = "prize_award_delivered"
    DATA_ENTRY_ERROR = "data_entry_error"
    METHOD_MISMATCH = "method_mismatch"
    OTHER = "other"


class AwardStatus(str, Enum):
    DECLARED = "declared"
    COLLECTED = "collected"
    DELIVERED = "delivered"
    UNCLAIMED = "unclaimed"
    REFUSED = "refused"
    RETURNED = "returned"
    CANCELED = "canceled"


# collected is an intermediate step toward delivered, not a final state
TERMINAL_AWARD_STATUSES: frozenset[AwardStatus] = frozenset({
    AwardStatus.DELIVERED,
    AwardStatus.UNCLAIMED,
    AwardStatus.REFUSED,
    AwardStatus.RETURNED,
    AwardStatus.CANCELED,
})


class AwardMethod(str, Enum):
    COLLECTION = "collection"
    DELIVERY = "delivery"


# ---------------------------------------------------------------------------
# Payment ledger (read-only input)
# ---------------------------------------------------------------------------


class PaymentLedgerEntry(FrozenWireModel):
    """One money movement for an entry fee or an extra.

    Only ``confirmed`` rows count toward totals.
    """

    id: str | None = None
    player_id: str | None = None
    player_name: str | None = None
    ledger_type: LedgerType
    amount: NonNegativeMoney
    currency: str = "EUR"
    status: PaymentStatus
    method: str = Field(
        default="unknown",
        validation_alias=AliasChoices("method", "paymentMethod", "payment_method"),
    )
    payment_reference: str | None = None
    is_late: bool = False
    ticket_id: Annotated[str | None, BeforeValidator(_blank_to_none)] = None
    extra_id: str | None = None
    confirmed_at: datetime | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == PaymentStatus.CONFIRMED


# ---------------------------------------------------------------------------
# Adjustments (append-only)
# ---------------------------------------------------------------------------


class AdjustmentEntry(FrozenWireModel):
    """A manual correction. Totals are a sum by type; order is display-only."""

    id: str
    timestamp: datetime = Field(
        validation_alias=AliasChoices("timestamp", "ts"),
    )
    type: AdjustmentType
    amount: NonNegativeMoney
    reason_code: ReasonCode | None = None
    note: str = ""
    created_by: str
    method: str | None = None
    payer_id: str | None = None
    currency: str = "EUR"
    prize_award_id: str | None = None

    @model_validator(mode="after")
    def _check_cash_reason(self) -> AdjustmentEntry:
        if self.type == AdjustmentType.CASH_OVER_SHORT and self.reason_code not in (
            ReasonCode.CASH_OVER,
            ReasonCode.CASH_SHORT,
        ):
            raise ValueError(
                "cash_over_short adjustments need reasonCode cash_over or cash_short"
            )
        return self


# ---------------------------------------------------------------------------
# Prize awards
# ---------------------------------------------------------------------------


class StatusHistoryEntry(FrozenWireModel):
    status: AwardStatus
    at: datetime
    by: str
    note: str | None = None


class PrizeAward(FrozenWireModel):
    """A prize assigned to a winner, tracked through its delivery lifecycle.

    Invariants (checked on every construction):
    - status_history starts with ``declared`` and ends with ``status``
    - a delivered award has an award method and a confirmed winner
    """

    prize_award_id: str
    place: int | None = None
    prize_name: str = ""
    declared_value: Annotated[
        Decimal | None, BeforeValidator(lambda v: None if v is None else to_money(v))
    ] = None
    sponsor: Annotated[str | None, BeforeValidator(_sponsor_name)] = None
    winner_player_id: str | None = None
    winner_name: str | None = None
    status: AwardStatus = AwardStatus.DECLARED
    award_method: Annotated[AwardMethod | None, BeforeValidator(_blank_to_none)] = None
    award_reference: str | None = None
    award_notes: str | None = None
    winner_confirmed: bool = False
    declared_at: datetime
    delivered_at: datetime | None = None
    collected_at: datetime | None = None
    status_history: list[StatusHistoryEntry] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_lifecycle(self) -> PrizeAward:
        if self.declared_value is not None and self.declared_value < 0:
            raise ValueError("declaredValue must be non-negative")
        if self.status_history[0].status != AwardStatus.DECLARED:
            raise ValueError("statusHistory must start with 'declared'")
        if self.status_history[-1].status != self.status:
            raise ValueError(
                f"statusHistory ends with '{self.status_history[-1].status.value}' "
                f"but status is '{self.status.value}'"
            )
        if self.status == AwardStatus.DELIVERED:
            if self.award_method is None:
                raise ValueError("delivered award requires awardMethod")
            if not self.winner_confirmed:
                raise ValueError("delivered award requires winnerConfirmed")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_AWARD_STATUSES

    @property
    def value(self) -> Decimal:
        return self.declared_value if self.declared_value is not None else to_money(0)


# ---------------------------------------------------------------------------
# Players and standings (collaborator inputs for the export)
# ---------------------------------------------------------------------------


class PlayerRecord(FrozenWireModel):
    player_id: str = Field(validation_alias=AliasChoices("playerId", "player_id", "id"))
    name: str = ""
    disqualified: bool = False


class LeaderboardEntry(FrozenWireModel):
    rank: int | None = None
    player_id: str = Field(validation_alias=AliasChoices("playerId", "player_id", "id"))
    name: str = ""
    score: float = 0


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------


class ReconciliationRecord(FrozenWireModel):
    """Per-room reconciliation state.

    ``approved_at`` is None while the record is a draft. Once set, only
    notes (when configured) and archive metadata may change.
    """

    room_id: str | None = None
    ledger: list[AdjustmentEntry] = Field(default_factory=list)
    prize_awards: list[PrizeAward] = Field(default_factory=list)
    approved_by: Annotated[str | None, BeforeValidator(_blank_to_none)] = None
    approved_at: datetime | None = None
    notes: Annotated[str, BeforeValidator(lambda v: v or "")] = ""
    archive_generated_at: datetime | None = None
    archive_sha256: str | None = None
    final_leaderboard: list[LeaderboardEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_record(self) -> ReconciliationRecord:
        if (self.approved_at is None) != (self.approved_by is None):
            raise ValueError("approvedBy and approvedAt must be set together")
        ids = [a.prize_award_id for a in self.prize_awards]
        if len(ids) != len(set(ids)):
            raise ValueError("prizeAwardId values must be unique")
        return self

    @property
    def is_approved(self) -> bool:
        return self.approved_at is not None

    def find_award(self, prize_award_id: str) -> PrizeAward | None:
        for award in self.prize_awards:
            if award.prize_award_id == prize_award_id:
                return award
        return None


# ---------------------------------------------------------------------------
# Derived totals
# ---------------------------------------------------------------------------


class MethodBreakdown(FrozenWireModel):
    """Confirmed money per payment method."""

    method: str
    entry_amount: Money
    entry_count: int = 0
    extras_amount: Money
    extras_count: int = 0
    total: Money
    # None (not 0) when nothing was received at all
    percentage: Money | None = None


class PaymentGroup(FrozenWireModel):
    method: str
    unique_players: int
    records: int
    total: Money


class PaymentSplit(FrozenWireModel):
    by_method: list[PaymentGroup] = Field(default_factory=list)
    unique_players: int = 0
    records: int = 0
    total: Money = Decimal("0.00")


class TypeTally(FrozenWireModel):
    count: int
    total: Money


class Totals(FrozenWireModel):
    """Output of the ledger aggregator.

    Identities:
        starting_received = total_entry_received + total_extras_amount
        net_adjustments   = adjustments_in - adjustments_out
        reconciled_total  = starting_received + net_adjustments
    """

    entry_fee: Money
    total_entry_received: Money
    total_extras_amount: Money
    total_extras_count: int
    starting_received: Money

    received: Money
    fees: Money
    refunds: Money
    prize_payouts: Money
    cash_over: Money
    cash_short: Money
    other_adjustments: Money

    adjustments_in: Money
    adjustments_out: Money
    net_adjustments: Money
    reconciled_total: Money

    method_breakdown: list[MethodBreakdown] = Field(default_factory=list)
    on_night: PaymentSplit = Field(default_factory=PaymentSplit)
    late: PaymentSplit = Field(default_factory=PaymentSplit)
    tickets: PaymentSplit = Field(default_factory=PaymentSplit)
    entry_payment_count: int = 0
    entry_fee_mismatches: int = 0
    adjustments_by_type: dict[str, TypeTally] = Field(default_factory=dict)


class AwardSummary(FrozenWireModel):
    by_status: dict[str, TypeTally] = Field(default_factory=dict)
    total_value: Money = Decimal("0.00")
    delivered_count: int = 0
    delivered_value: Money = Decimal("0.00")
    unclaimed_count: int = 0
    unclaimed_value: Money = Decimal("0.00")


# ---------------------------------------------------------------------------
# Archive manifest
# ---------------------------------------------------------------------------


class ManifestFile(FrozenWireModel):
    name: str
    size: int
    sha256: str


class ArchiveManifest(WireModel):
    """Integrity index of an archive bundle. Never lists itself."""

    algorithm: str = "SHA-256"
    created_at: datetime
    files: list[ManifestFile] = Field(default_factory=list)
    room_id: str | None = None
    schema_version: int = ARCHIVE_SCHEMA_VERSION
    status: str = "approved"
    signer: str | None = None
    signature: str | None = None

    def file(self, name: str) -> ManifestFile | None:
        for entry in self.files:
            if entry.name == name:
                return entry
        return None


__all__ = [
    "ARCHIVE_SCHEMA_VERSION",
    "AdjustmentEntry",
    "ArchiveManifest",
    "AdjustmentType",
    "AwardMethod",
    "AwardStatus",
    "AwardSummary",
    "FrozenWireModel",
    "LeaderboardEntry",
    "LedgerType",
    "ManifestFile",
    "MethodBreakdown",
    "Money",
    "NonNegativeMoney",
    "PaymentGroup",
    "PaymentLedgerEntry",
    "PaymentSplit",
    "PaymentStatus",
    "PlayerRecord",
    "PrizeAward",
    "ReasonCode",
    "ReconciliationRecord",
    "StatusHistoryEntry",
    "TERMINAL_AWARD_STATUSES",
    "Totals",
    "TypeTally",
    "WireModel",
    "build",
    "evolve",
    "field_name",
]
