"""Shared fixtures for reconciliation tests."""

import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("QUIZRECON_TEST_MODE", "true")

from quizrecon.reconciliation.models import (  # noqa: E402
    PaymentLedgerEntry,
    PlayerRecord,
    ReconciliationRecord,
)


class FakeClock:
    """Deterministic clock: each call advances by one minute."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(minutes=1)):
        self.now = start or datetime(2024, 5, 1, 20, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class FrozenClock:
    """Always returns the same instant."""

    def __init__(self, at: datetime | None = None):
        self.at = at or datetime(2024, 5, 1, 23, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.at


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def frozen_clock():
    return FrozenClock()


@pytest.fixture
def record():
    return ReconciliationRecord(room_id="ROOM1")


@pytest.fixture
def example_payments():
    """Two cash entries at 10.00 and one 2.00 card extra."""
    return [
        PaymentLedgerEntry(
            id="1", player_id="p1", player_name="Alice",
            ledger_type="entry_fee", amount="10.00", status="confirmed", method="cash",
        ),
        PaymentLedgerEntry(
            id="2", player_id="p2", player_name="Bob",
            ledger_type="entry_fee", amount="10.00", status="confirmed", method="cash",
        ),
        PaymentLedgerEntry(
            id="3", player_id="p1", player_name="Alice",
            ledger_type="extra_purchase", amount="2.00", status="confirmed", method="card",
            extra_id="lifeline",
        ),
    ]


@pytest.fixture
def players():
    return [
        PlayerRecord(player_id="p1", name="Alice"),
        PlayerRecord(player_id="p2", name="Bob"),
        PlayerRecord(player_id="p3", name="Carol", disqualified=True),
    ]
