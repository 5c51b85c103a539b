"""Artifact renderers for the reconciliation archive.

Every renderer reads from the same ReportContext, so all artifacts in one
bundle describe the same snapshot. Renderers are deterministic: no
generation timestamps, stable column order, stable row order.
"""

from __future__ import annotations

import csv
import io
import json
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable

from .awards import sort_awards
from .models import (
    AdjustmentEntry,
    AdjustmentType,
    AwardSummary,
    LeaderboardEntry,
    LedgerType,
    PaymentLedgerEntry,
    PlayerRecord,
    ReasonCode,
    ReconciliationRecord,
    Totals,
)
from .money import ZERO, format_money

DRAFT_MARKER = "DRAFT - NOT APPROVED"

PLAYER_COLUMNS = [
    "playerId",
    "name",
    "disqualified",
    "entryPaidAmount",
    "paymentMethod",
    "extrasCount",
    "extrasAmount",
    "totalPaid",
]

PRIZE_COLUMNS = [
    "prizeAwardId",
    "place",
    "prizeName",
    "prizeValue",
    "currency",
    "sponsor",
    "winnerPlayerId",
    "winnerName",
    "status",
    "method",
    "reference",
    "declaredAt",
    "deliveredAt",
    "statusHistorySummary",
    "notes",
]

LEDGER_COLUMNS = [
    "id",
    "timestamp",
    "type",
    "reasonCode",
    "direction",
    "amount",
    "currency",
    "method",
    "payerId",
    "prizeAwardId",
    "createdBy",
    "note",
]

STANDINGS_COLUMNS = ["rank", "playerId", "name", "score"]


@dataclass
class ReportContext:
    """One consistent snapshot shared by every renderer."""

    record: ReconciliationRecord
    totals: Totals
    award_summary: AwardSummary
    players: list[PlayerRecord] = field(default_factory=list)
    leaderboard: list[LeaderboardEntry] = field(default_factory=list)
    payments: list[PaymentLedgerEntry] = field(default_factory=list)
    currency_code: str = "EUR"
    currency_symbol: str = ""
    draft: bool = False

    @property
    def standings(self) -> list[LeaderboardEntry]:
        # Frozen standings on the record win over the live leaderboard
        return list(self.record.final_leaderboard or self.leaderboard)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def _money(value: Decimal | None) -> str:
    return "" if value is None else format_money(value)


def _score(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def _csv(header: list[str], rows: list[list[object]], draft: bool) -> bytes:
    buf = io.StringIO()
    if draft:
        buf.write(f"# {DRAFT_MARKER}\n")
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    return buf.getvalue().encode("utf-8")


def adjustment_direction(adj: AdjustmentEntry) -> str:
    if adj.type == AdjustmentType.RECEIVED:
        return "in"
    if adj.type == AdjustmentType.CASH_OVER_SHORT and adj.reason_code == ReasonCode.CASH_OVER:
        return "in"
    return "out"


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def render_summary(ctx: ReportContext) -> bytes:
    """Metric/value pairs."""
    t = ctx.totals
    r = ctx.record
    s = ctx.award_summary
    rows: list[list[object]] = [
        ["status", "DRAFT" if ctx.draft else "APPROVED"],
        ["roomId", r.room_id],
        ["approvedBy", r.approved_by],
        ["approvedAt", _iso(r.approved_at)],
        ["currency", ctx.currency_code],
        ["entryFee", _money(t.entry_fee)],
        ["totalEntryReceived", _money(t.total_entry_received)],
        ["entryPaymentCount", t.entry_payment_count],
        ["entryFeeMismatches", t.entry_fee_mismatches],
        ["totalExtrasAmount", _money(t.total_extras_amount)],
        ["totalExtrasCount", t.total_extras_count],
        ["startingReceived", _money(t.starting_received)],
        ["received", _money(t.received)],
        ["fees", _money(t.fees)],
        ["refunds", _money(t.refunds)],
        ["prizePayouts", _money(t.prize_payouts)],
        ["cashOver", _money(t.cash_over)],
        ["cashShort", _money(t.cash_short)],
        ["otherAdjustments", _money(t.other_adjustments)],
        ["adjustmentsIn", _money(t.adjustments_in)],
        ["adjustmentsOut", _money(t.adjustments_out)],
        ["netAdjustments", _money(t.net_adjustments)],
        ["reconciledTotal", _money(t.reconciled_total)],
    ]
    for mb in t.method_breakdown:
        rows.append([f"method.{mb.method}.total", _money(mb.total)])
        rows.append([f"method.{mb.method}.percentage", _money(mb.percentage)])
    rows.extend([
        ["onNightPlayers", t.on_night.unique_players],
        ["onNightTotal", _money(t.on_night.total)],
        ["latePlayers", t.late.unique_players],
        ["lateTotal", _money(t.late.total)],
        ["ticketPlayers", t.tickets.unique_players],
        ["ticketTotal", _money(t.tickets.total)],
        ["prizeCount", len(r.prize_awards)],
        ["prizeTotalValue", _money(s.total_value)],
        ["prizesDeliveredCount", s.delivered_count],
        ["prizesDeliveredValue", _money(s.delivered_value)],
        ["prizesUnclaimedCount", s.unclaimed_count],
        ["prizesUnclaimedValue", _money(s.unclaimed_value)],
        ["players", len(ctx.players)],
        ["playersDisqualified", sum(1 for p in ctx.players if p.disqualified)],
        ["notes", r.notes],
    ])
    return _csv(["metric", "value"], rows, ctx.draft)


def render_player_payments(ctx: ReportContext) -> bytes:
    """Confirmed money per player, listed players first, then unlisted payers."""
    per_player: OrderedDict[str, dict] = OrderedDict()
    for p in ctx.players:
        per_player[p.player_id] = {
            "name": p.name,
            "disqualified": p.disqualified,
            "entry": ZERO,
            "methods": [],
            "extras_count": 0,
            "extras": ZERO,
        }

    unlisted: dict[str, dict] = {}
    for pay in ctx.payments:
        if not pay.is_confirmed or not pay.player_id:
            continue
        row = per_player.get(pay.player_id)
        if row is None:
            row = unlisted.setdefault(pay.player_id, {
                "name": pay.player_name or "",
                "disqualified": False,
                "entry": ZERO,
                "methods": [],
                "extras_count": 0,
                "extras": ZERO,
            })
        if pay.ledger_type == LedgerType.ENTRY_FEE:
            row["entry"] += pay.amount
            if pay.method not in row["methods"]:
                row["methods"].append(pay.method)
        else:
            row["extras_count"] += 1
            row["extras"] += pay.amount

    for player_id in sorted(unlisted):
        per_player[player_id] = unlisted[player_id]

    rows = [
        [
            player_id,
            row["name"],
            "true" if row["disqualified"] else "false",
            _money(row["entry"]),
            "+".join(row["methods"]),
            row["extras_count"],
            _money(row["extras"]),
            _money(row["entry"] + row["extras"]),
        ]
        for player_id, row in per_player.items()
    ]
    return _csv(PLAYER_COLUMNS, rows, ctx.draft)


def _history_summary(award) -> str:
    return " > ".join(
        f"{h.status.value}@{_iso(h.at)} by {h.by}" for h in award.status_history
    )


def render_prize_register(ctx: ReportContext) -> bytes:
    rows = [
        [
            a.prize_award_id,
            a.place,
            a.prize_name,
            _money(a.declared_value),
            ctx.currency_code,
            a.sponsor,
            a.winner_player_id,
            a.winner_name,
            a.status.value,
            a.award_method.value if a.award_method else "",
            a.award_reference,
            _iso(a.declared_at),
            _iso(a.delivered_at),
            _history_summary(a),
            a.award_notes,
        ]
        for a in sort_awards(ctx.record.prize_awards)
    ]
    return _csv(PRIZE_COLUMNS, rows, ctx.draft)


def render_ledger(ctx: ReportContext) -> bytes:
    """Adjustments in insertion order."""
    rows = [
        [
            adj.id,
            _iso(adj.timestamp),
            adj.type.value,
            adj.reason_code.value if adj.reason_code else "",
            adjustment_direction(adj),
            _money(adj.amount),
            adj.currency,
            adj.method,
            adj.payer_id,
            adj.prize_award_id,
            adj.created_by,
            adj.note,
        ]
        for adj in ctx.record.ledger
    ]
    return _csv(LEDGER_COLUMNS, rows, ctx.draft)


def render_final_standings(ctx: ReportContext) -> bytes:
    rows = [
        [
            entry.rank if entry.rank is not None else position,
            entry.player_id,
            entry.name,
            _score(entry.score),
        ]
        for position, entry in enumerate(ctx.standings, start=1)
    ]
    return _csv(STANDINGS_COLUMNS, rows, ctx.draft)


def render_report(ctx: ReportContext) -> bytes:
    """Human-readable reconciliation report."""
    t = ctx.totals
    r = ctx.record
    sym = ctx.currency_symbol

    def m(value: Decimal) -> str:
        return format_money(value, sym)

    lines: list[str] = []
    if ctx.draft:
        lines += [DRAFT_MARKER, ""]
    lines += [
        "RECONCILIATION REPORT",
        "=====================",
        f"Room:         {r.room_id}",
        f"Currency:     {ctx.currency_code}",
        f"Approved by:  {r.approved_by or '-'}",
        f"Approved at:  {_iso(r.approved_at) or '-'}",
        "",
        "RECEIPTS",
        "--------",
        f"Entry fee:              {m(t.entry_fee)}",
        f"Entry received:         {m(t.total_entry_received)} ({t.entry_payment_count} payments)",
        f"Extras received:        {m(t.total_extras_amount)} ({t.total_extras_count} purchases)",
        f"Starting received:      {m(t.starting_received)}",
        "",
        "BY PAYMENT METHOD",
        "-----------------",
    ]
    if not t.method_breakdown:
        lines.append("(no confirmed payments)")
    for mb in t.method_breakdown:
        pct = f"{mb.percentage}%" if mb.percentage is not None else "n/a"
        lines.append(
            f"{mb.method:<16} entry {m(mb.entry_amount)}  extras {m(mb.extras_amount)}"
            f" x{mb.extras_count}  total {m(mb.total)}  ({pct})"
        )

    lines += [
        "",
        "ADJUSTMENTS",
        "-----------",
        f"Received:               {m(t.received)}",
        f"Cash over:              {m(t.cash_over)}",
        f"Fees:                   {m(t.fees)}",
        f"Refunds:                {m(t.refunds)}",
        f"Prize payouts:          {m(t.prize_payouts)}",
        f"Cash short:             {m(t.cash_short)}",
        f"Other:                  {m(t.other_adjustments)}",
        f"Net adjustments:        {m(t.net_adjustments)}",
        "",
        f"RECONCILED TOTAL:       {m(t.reconciled_total)}",
        "",
        "PRIZES",
        "------",
    ]
    awards = sort_awards(r.prize_awards)
    if not awards:
        lines.append("(no prizes declared)")
    for a in awards:
        place = a.place if a.place is not None else "-"
        value = m(a.declared_value) if a.declared_value is not None else "-"
        lines.append(
            f"#{place} {a.prize_name} ({value}) -> {a.winner_name or '-'}: {a.status.value}"
        )
    s = ctx.award_summary
    lines += [
        f"Total declared value:   {m(s.total_value)}",
        f"Delivered:              {s.delivered_count} ({m(s.delivered_value)})",
        f"Unclaimed:              {s.unclaimed_count} ({m(s.unclaimed_value)})",
        "",
        "NOTES",
        "-----",
        r.notes or "(none)",
        "",
    ]
    return "\n".join(lines).encode("utf-8")


def render_snapshot(ctx: ReportContext) -> bytes:
    """Machine-readable snapshot of the whole record plus derived totals."""
    data = {
        "status": "draft" if ctx.draft else "approved",
        "currency": ctx.currency_code,
        "record": ctx.record.to_wire(),
        "totals": ctx.totals.to_wire(),
        "awardSummary": ctx.award_summary.to_wire(),
        "players": [p.to_wire() for p in ctx.players],
        "standings": [e.to_wire() for e in ctx.standings],
    }
    return (json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


Renderer = Callable[[ReportContext], bytes]

# Fixed bundle order
ARTIFACTS: list[tuple[str, Renderer]] = [
    ("summary.csv", render_summary),
    ("player_payments.csv", render_player_payments),
    ("prize_register.csv", render_prize_register),
    ("ledger.csv", render_ledger),
    ("final_standings.csv", render_final_standings),
    ("reconciliation_report.txt", render_report),
    ("reconciliation.json", render_snapshot),
]

MANIFEST_NAME = "MANIFEST"


__all__ = [
    "ARTIFACTS",
    "DRAFT_MARKER",
    "LEDGER_COLUMNS",
    "MANIFEST_NAME",
    "PLAYER_COLUMNS",
    "PRIZE_COLUMNS",
    "ReportContext",
    "STANDINGS_COLUMNS",
    "adjustment_direction",
    "render_final_standings",
    "render_ledger",
    "render_player_payments",
    "render_prize_register",
    "render_report",
    "render_snapshot",
    "render_summary",
]
