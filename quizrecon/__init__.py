"""Financial reconciliation and prize-award tracking for quiz events."""

__version__ = "0.1.0"
