"""Filesystem-based ArchiveStore implementation.

Layout:
  {data_dir}/archives/{room_id}/{bundle}.zip
  {data_dir}/archives/{room_id}/{bundle}.zip.sha256

Bundles are compliance records and are never pruned.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import bittensor as bt

from quizrecon.reconciliation.exporter import ArchiveBundle

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


def _safe(component: str) -> str:
    """Make a path component safe: no separators, no parent references."""
    cleaned = _SAFE_NAME.sub("_", component).lstrip(".")
    if not cleaned:
        raise ValueError(f"invalid path component: {component!r}")
    return cleaned


def _write_atomic(path: Path, data: bytes) -> None:
    """Write via a temp file and rename, creating parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "wb") as f:
        f.write(data)
    os.replace(tmp, path)


class FilesystemArchiveStore:
    """Local filesystem ArchiveStore implementation."""

    def __init__(self, data_dir: str):
        self.base = Path(data_dir) / "archives"
        self.base.mkdir(parents=True, exist_ok=True)

    def room_dir(self, room_id: str) -> Path:
        return self.base / _safe(room_id)

    async def put_bundle(self, room_id: str, bundle: ArchiveBundle) -> str:
        """Write the container and its detached digest. Returns the bundle ID."""
        room_dir = self.room_dir(room_id)
        bundle_id = _safe(bundle.name)
        container_path = room_dir / bundle_id
        digest_path = room_dir / f"{bundle_id}.sha256"

        # Container first: a digest file never points at a missing bundle
        _write_atomic(container_path, bundle.container)
        _write_atomic(digest_path, bundle.digest_file_content.encode("utf-8"))

        bt.logging.info({
            "recon_archive_stored": {
                "room_id": room_id,
                "bundle": bundle_id,
                "path": str(container_path),
                "sha256": bundle.digest,
            }
        })
        return bundle_id

    async def list_bundles(self, room_id: str) -> list[str]:
        room_dir = self.room_dir(room_id)
        if not room_dir.exists():
            return []
        return sorted(p.name for p in room_dir.iterdir() if p.suffix == ".zip")

    async def get_bundle(self, room_id: str, bundle_id: str) -> tuple[bytes, str] | None:
        room_dir = self.room_dir(room_id)
        container_path = room_dir / _safe(bundle_id)
        digest_path = room_dir / f"{_safe(bundle_id)}.sha256"
        if not container_path.exists() or not digest_path.exists():
            return None
        return container_path.read_bytes(), digest_path.read_text(encoding="utf-8")


__all__ = ["FilesystemArchiveStore"]
