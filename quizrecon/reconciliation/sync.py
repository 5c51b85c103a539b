"""Reconciliation sync: patch exchange between a session and a transport.

Incoming messages are applied to the session (never raising). Outgoing
field edits are coalesced per logical field by a CoalescingScheduler:
repeated edits within the quiet period cancel and reschedule the timer, so
only the last value is sent. Transitions and approval go out immediately;
approval flushes every pending edit first so nothing is sent after the
record freezes.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Hashable, Protocol, runtime_checkable

import bittensor as bt

from .exporter import ArchiveBundle
from .models import PrizeAward, ReconciliationRecord, field_name
from .session import ReconciliationSession
from .store.interface import ArchiveStore

EVENT_UPDATE_RECONCILIATION = "update_reconciliation"
EVENT_UPDATE_PRIZE_AWARD = "update_prize_award"
EVENT_RECONCILIATION_STATE = "reconciliation_state"


@runtime_checkable
class PatchTransport(Protocol):
    """Delivers patch messages to the other observers of a room."""

    async def emit(self, event: str, message: dict[str, Any]) -> None:
        ...


# ---------------------------------------------------------------------------
# Coalescing scheduler
# ---------------------------------------------------------------------------


class CoalescingScheduler:
    """Fires ``callback(key, payload)`` once per key after a quiet period.

    Scheduling a key that is already pending cancels its timer and starts
    a new one with the latest payload. Timers never stack.
    """

    def __init__(
        self,
        callback: Callable[[Hashable, Any], Awaitable[None]],
        delay: float = 0.25,
    ):
        self.callback = callback
        self.delay = delay
        self._handles: dict[Hashable, asyncio.TimerHandle] = {}
        self._payloads: dict[Hashable, Any] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def schedule(self, key: Hashable, payload: Any, delay: float | None = None) -> None:
        if self._closed:
            raise RuntimeError("scheduler is closed")
        loop = asyncio.get_running_loop()
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()
        self._payloads[key] = payload
        self._handles[key] = loop.call_later(
            self.delay if delay is None else delay, self._fire, key,
        )
        bt.logging.debug({"recon_debounce": {"key": str(key), "rescheduled": handle is not None}})

    def cancel(self, key: Hashable) -> bool:
        """Drop a pending key without firing. Returns True if one was pending."""
        handle = self._handles.pop(key, None)
        self._payloads.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def pending(self) -> dict[Hashable, Any]:
        return dict(self._payloads)

    async def flush(self, keys: Callable[[Hashable], bool] | None = None) -> int:
        """Fire pending keys now, optionally only those matching ``keys``.

        Returns the number of callbacks run.
        """
        selected = [k for k in list(self._handles) if keys is None or keys(k)]
        for key in selected:
            self._handles.pop(key).cancel()
        fired = 0
        for key in selected:
            payload = self._payloads.pop(key)
            await self.callback(key, payload)
            fired += 1
        # Callbacks already dispatched by timers
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return fired

    async def close(self, flush: bool = True) -> None:
        if flush:
            await self.flush()
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._payloads.clear()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._closed = True

    def _fire(self, key: Hashable) -> None:
        self._handles.pop(key, None)
        if key not in self._payloads:
            return
        payload = self._payloads.pop(key)
        task = asyncio.get_running_loop().create_task(self._run(key, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, key: Hashable, payload: Any) -> None:
        try:
            await self.callback(key, payload)
        except Exception as e:
            bt.logging.error({"recon_debounce_failed": {"key": str(key), "error": str(e)}})


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


def _award_field_patch(award: PrizeAward, field: str) -> dict[str, Any]:
    """Wire-form ``{alias: value}`` for one award field."""
    alias = PrizeAward.model_fields[field].alias or field
    return {alias: award.to_wire()[alias]}


class ReconciliationSync:
    """Connects a ReconciliationSession to a PatchTransport."""

    def __init__(
        self,
        session: ReconciliationSession,
        transport: PatchTransport,
        debounce_seconds: float | None = None,
    ):
        self.session = session
        self.transport = transport
        if debounce_seconds is None:
            debounce_seconds = session.settings.debounce_seconds
        self.scheduler = CoalescingScheduler(self._send_debounced, debounce_seconds)

    @property
    def room_id(self) -> str:
        return self.session.room_id

    @property
    def record(self) -> ReconciliationRecord:
        return self.session.record

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    async def handle(self, event: str, message: Any) -> bool:
        """Apply an incoming message. Returns True if the record changed."""
        if not isinstance(message, dict):
            bt.logging.warning({"recon_sync_dropped": {"event": event, "reason": "not_a_mapping"}})
            return False
        room_id = message.get("roomId")
        if room_id is not None and room_id != self.room_id:
            bt.logging.warning({
                "recon_sync_dropped": {
                    "event": event,
                    "reason": "room_mismatch",
                    "room_id": room_id,
                }
            })
            return False

        before = self.session.record
        if event == EVENT_UPDATE_RECONCILIATION:
            self.session.apply_patch(message.get("patch"))
        elif event == EVENT_UPDATE_PRIZE_AWARD:
            prize_award_id = message.get("prizeAwardId")
            if not prize_award_id:
                bt.logging.warning({
                    "recon_sync_dropped": {"event": event, "reason": "missing_prize_award_id"}
                })
                return False
            self.session.apply_award_patch(prize_award_id, message.get("patch"))
        elif event == EVENT_RECONCILIATION_STATE:
            snapshot = message.get("reconciliation", message.get("state"))
            self.session.replace_record(snapshot)
        else:
            bt.logging.debug({"recon_sync_ignored": {"event": event}})
            return False
        return self.session.record is not before

    # ------------------------------------------------------------------
    # Outgoing: debounced edits
    # ------------------------------------------------------------------

    def edit_notes(self, notes: str) -> None:
        self.session.update_notes(notes)
        self.scheduler.schedule(("record", "notes"), {"notes": self.session.record.notes})

    def edit_award(self, prize_award_id: str, changes: dict[str, Any]) -> None:
        """Apply field edits locally and queue one outgoing patch per field."""
        award = self.session.update_award_fields(prize_award_id, changes)
        for field in changes:
            name = field_name(PrizeAward, field)
            self.scheduler.schedule(
                ("award", prize_award_id, name),
                _award_field_patch(award, name),
            )

    async def _send_debounced(self, key: Hashable, payload: dict[str, Any]) -> None:
        if key[0] == "award":
            await self._emit_award(key[1], payload)
        else:
            await self._emit_record(payload)

    # ------------------------------------------------------------------
    # Outgoing: immediate
    # ------------------------------------------------------------------

    async def add_adjustment(self, **kwargs: Any) -> ReconciliationRecord:
        record = self.session.append_adjustment(**kwargs)
        await self._emit_record({"ledger": [a.to_wire() for a in record.ledger]})
        return record

    async def declare_award(self, **kwargs: Any) -> PrizeAward:
        # A new award is unknown to peers, so the whole array goes out
        award = self.session.declare_award(**kwargs)
        await self._emit_record({
            "prizeAwards": [a.to_wire() for a in self.session.record.prize_awards],
        })
        return award

    async def transition(
        self,
        prize_award_id: str,
        target: Any,
        *,
        by: str,
        note: str | None = None,
        **changes: Any,
    ) -> PrizeAward:
        await self.scheduler.flush(lambda k: k[0] == "award" and k[1] == prize_award_id)
        award = self.session.transition(prize_award_id, target, by=by, note=note, **changes)
        patch: dict[str, Any] = {"status": award.status.value, "by": by}
        if note is not None:
            patch["note"] = note
        if award.award_method is not None:
            patch["awardMethod"] = award.award_method.value
        patch["winnerConfirmed"] = award.winner_confirmed
        await self._emit_award(prize_award_id, patch)
        return award

    async def approve(self, approver_name: str, notes: str | None = None) -> ReconciliationRecord:
        await self.scheduler.flush()
        record = self.session.approve(approver_name, notes)
        await self._emit_record({
            "approvedBy": record.approved_by,
            "approvedAt": record.approved_at.isoformat(),
            "notes": record.notes,
        })
        return record

    async def export(self, store: ArchiveStore | None = None) -> ArchiveBundle:
        if store is not None:
            bundle = await self.session.export_to(store)
        else:
            bundle = self.session.export()
        await self._emit_record({
            "archiveGeneratedAt": bundle.manifest.created_at.isoformat(),
            "archiveSha256": bundle.digest,
        })
        return bundle

    async def send_state(self) -> None:
        """Broadcast the full record, e.g. to a newly joined observer."""
        await self.transport.emit(EVENT_RECONCILIATION_STATE, {
            "roomId": self.room_id,
            "reconciliation": self.session.record.to_wire(),
        })

    async def close(self) -> None:
        await self.scheduler.close(flush=True)

    # ------------------------------------------------------------------
    # Emit helpers
    # ------------------------------------------------------------------

    async def _emit_record(self, patch: dict[str, Any]) -> None:
        await self._emit(EVENT_UPDATE_RECONCILIATION, {"roomId": self.room_id, "patch": patch})

    async def _emit_award(self, prize_award_id: str, patch: dict[str, Any]) -> None:
        await self._emit(EVENT_UPDATE_PRIZE_AWARD, {
            "roomId": self.room_id,
            "prizeAwardId": prize_award_id,
            "patch": patch,
        })

    async def _emit(self, event: str, message: dict[str, Any]) -> None:
        try:
            await self.transport.emit(event, message)
        except Exception as e:
            # Transport owns retries; local state is already applied
            bt.logging.error({
                "recon_emit_failed": {"room_id": self.room_id, "event": event, "error": str(e)}
            })


__all__ = [
    "CoalescingScheduler",
    "EVENT_RECONCILIATION_STATE",
    "EVENT_UPDATE_PRIZE_AWARD",
    "EVENT_UPDATE_RECONCILIATION",
    "PatchTransport",
    "ReconciliationSync",
]
