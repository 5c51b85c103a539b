"""Ledger aggregation: raw payments plus adjustments into auditable totals.

Pure functions only. The same inputs always produce the same Totals; no
clock, no I/O, no logging on the hot path.

Sign convention for adjustments:
    in  = received + cash_over
    out = refund + fee + prize_payout + cash_short + other
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any, Iterable

from .models import (
    AdjustmentEntry,
    AdjustmentType,
    LedgerType,
    MethodBreakdown,
    PaymentGroup,
    PaymentLedgerEntry,
    PaymentSplit,
    ReasonCode,
    Totals,
    TypeTally,
)
from .money import ZERO, to_money

HUNDRED = Decimal("100")


def _player_key(payment: PaymentLedgerEntry) -> str:
    """Identity used for unique-player counts."""
    return payment.player_id or payment.player_name or payment.id or ""


def method_percentage(total: Decimal, starting_received: Decimal) -> Decimal | None:
    """Share of ``starting_received`` in percent, or None when nothing came in."""
    if starting_received <= 0:
        return None
    return to_money(total / starting_received * HUNDRED)


def summarize_payment_groups(payments: Iterable[PaymentLedgerEntry]) -> PaymentSplit:
    """Group payments by method with record counts and unique players.

    A player who paid through two methods counts once in the overall figure
    and once in each method group.
    """
    records: dict[str, int] = defaultdict(int)
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    players: dict[str, set[str]] = defaultdict(set)
    all_players: set[str] = set()
    overall_records = 0
    overall_total = ZERO

    for payment in payments:
        key = _player_key(payment)
        records[payment.method] += 1
        totals[payment.method] += payment.amount
        players[payment.method].add(key)
        all_players.add(key)
        overall_records += 1
        overall_total += payment.amount

    groups = [
        PaymentGroup(
            method=method,
            unique_players=len(players[method]),
            records=records[method],
            total=totals[method],
        )
        for method in records
    ]
    return PaymentSplit(
        by_method=groups,
        unique_players=len(all_players),
        records=overall_records,
        total=overall_total,
    )


def fold_adjustments(
    adjustments: Iterable[AdjustmentEntry],
) -> dict[str, Any]:
    """Sum adjustments by type and direction.

    Returns a dict with the per-bucket sums, ``adjustments_in``,
    ``adjustments_out`` and ``adjustments_by_type``.
    """
    buckets = {
        "received": ZERO,
        "fees": ZERO,
        "refunds": ZERO,
        "prize_payouts": ZERO,
        "cash_over": ZERO,
        "cash_short": ZERO,
        "other_adjustments": ZERO,
    }
    by_type: dict[str, list] = {}

    for adj in adjustments:
        tally = by_type.setdefault(adj.type.value, [0, ZERO])
        tally[0] += 1
        tally[1] += adj.amount

        if adj.type == AdjustmentType.RECEIVED:
            buckets["received"] += adj.amount
        elif adj.type == AdjustmentType.FEE:
            buckets["fees"] += adj.amount
        elif adj.type == AdjustmentType.REFUND:
            buckets["refunds"] += adj.amount
        elif adj.type == AdjustmentType.PRIZE_PAYOUT:
            buckets["prize_payouts"] += adj.amount
        elif adj.type == AdjustmentType.OTHER:
            buckets["other_adjustments"] += adj.amount
        elif adj.type == AdjustmentType.CASH_OVER_SHORT:
            if adj.reason_code == ReasonCode.CASH_OVER:
                buckets["cash_over"] += adj.amount
            else:
                buckets["cash_short"] += adj.amount

    adjustments_in = buckets["received"] + buckets["cash_over"]
    adjustments_out = (
        buckets["fees"]
        + buckets["refunds"]
        + buckets["prize_payouts"]
        + buckets["cash_short"]
        + buckets["other_adjustments"]
    )
    return {
        **buckets,
        "adjustments_in": adjustments_in,
        "adjustments_out": adjustments_out,
        "adjustments_by_type": {
            name: TypeTally(count=count, total=total)
            for name, (count, total) in by_type.items()
        },
    }


def compute_totals(
    payments: Iterable[PaymentLedgerEntry],
    adjustments: Iterable[AdjustmentEntry],
    entry_fee: Any,
) -> Totals:
    """Aggregate confirmed payments and adjustments into Totals.

    Args:
        payments: Raw payment ledger rows. Non-confirmed rows are ignored.
        adjustments: Manual adjustments in insertion order.
        entry_fee: Configured per-player entry fee, used for mismatch counts.

    Returns:
        Totals where ``reconciled_total`` is the authoritative figure.
    """
    fee = to_money(entry_fee)
    confirmed = [p for p in payments if p.is_confirmed]

    total_entry = ZERO
    total_extras = ZERO
    extras_count = 0
    entry_count = 0
    mismatches = 0

    method_entry: dict[str, Decimal] = defaultdict(lambda: ZERO)
    method_entry_count: dict[str, int] = defaultdict(int)
    method_extras: dict[str, Decimal] = defaultdict(lambda: ZERO)
    method_extras_count: dict[str, int] = defaultdict(int)
    methods: list[str] = []

    for payment in confirmed:
        if payment.method not in methods:
            methods.append(payment.method)
        if payment.ledger_type == LedgerType.ENTRY_FEE:
            total_entry += payment.amount
            entry_count += 1
            method_entry[payment.method] += payment.amount
            method_entry_count[payment.method] += 1
            if payment.amount != fee:
                mismatches += 1
        else:
            total_extras += payment.amount
            extras_count += 1
            method_extras[payment.method] += payment.amount
            method_extras_count[payment.method] += 1

    starting = total_entry + total_extras

    breakdown = []
    for method in methods:
        method_total = method_entry[method] + method_extras[method]
        breakdown.append(MethodBreakdown(
            method=method,
            entry_amount=method_entry[method],
            entry_count=method_entry_count[method],
            extras_amount=method_extras[method],
            extras_count=method_extras_count[method],
            total=method_total,
            percentage=method_percentage(method_total, starting),
        ))

    walk_ins = [p for p in confirmed if p.ticket_id is None]
    folded = fold_adjustments(adjustments)
    net = folded["adjustments_in"] - folded["adjustments_out"]

    return Totals(
        entry_fee=fee,
        total_entry_received=total_entry,
        total_extras_amount=total_extras,
        total_extras_count=extras_count,
        starting_received=starting,
        net_adjustments=net,
        reconciled_total=starting + net,
        method_breakdown=breakdown,
        on_night=summarize_payment_groups(p for p in walk_ins if not p.is_late),
        late=summarize_payment_groups(p for p in walk_ins if p.is_late),
        tickets=summarize_payment_groups(p for p in confirmed if p.ticket_id is not None),
        entry_payment_count=entry_count,
        entry_fee_mismatches=mismatches,
        **folded,
    )


__all__ = [
    "compute_totals",
    "fold_adjustments",
    "method_percentage",
    "summarize_payment_groups",
]
