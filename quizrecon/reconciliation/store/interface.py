"""ArchiveStore protocol - pluggable persistence for finished bundles.

Implementations: FilesystemArchiveStore (v1).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from quizrecon.reconciliation.exporter import ArchiveBundle


@runtime_checkable
class ArchiveStore(Protocol):
    """Abstract interface for writing and reading archive bundles."""

    async def put_bundle(self, room_id: str, bundle: ArchiveBundle) -> str:
        """Write a container and its detached digest. Returns the bundle ID."""
        ...

    async def list_bundles(self, room_id: str) -> list[str]:
        """List bundle IDs for a room, oldest first."""
        ...

    async def get_bundle(self, room_id: str, bundle_id: str) -> tuple[bytes, str] | None:
        """Fetch container bytes and the detached digest file content."""
        ...


__all__ = ["ArchiveStore"]
