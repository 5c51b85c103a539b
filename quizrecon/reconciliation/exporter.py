"""Archive exporter: renders, hashes and packages the reconciliation record.

Steps:
1. Render every artifact from one ReportContext snapshot.
2. Hash each artifact's exact bytes into the manifest.
3. Serialize the manifest (optionally signed) as the last entry.
4. Zip everything deterministically and hash the whole container into a
   detached digest.

Any render failure aborts the export. There are no partial bundles.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable

import bittensor as bt

from .aggregator import compute_totals
from .awards import Clock, summarize_awards, utcnow
from .errors import ReconciliationError, RenderError, ValidationError
from .integrity import (
    Hasher,
    digest_file_content,
    pack_zip,
    resolve_hasher,
    sign_manifest,
)
from .models import (
    ARCHIVE_SCHEMA_VERSION,
    ArchiveManifest,
    LeaderboardEntry,
    ManifestFile,
    PaymentLedgerEntry,
    PlayerRecord,
    ReconciliationRecord,
    Totals,
)
from .reports import ARTIFACTS, MANIFEST_NAME, ReportContext


@dataclass(frozen=True)
class ArchiveArtifact:
    name: str
    content: bytes
    sha256: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ArchiveBundle:
    """A finished export: artifacts, manifest, container and its digest."""

    name: str
    artifacts: list[ArchiveArtifact]
    manifest: ArchiveManifest
    manifest_bytes: bytes
    container: bytes
    digest: str
    draft: bool = False
    totals: Totals | None = field(default=None, repr=False)

    @property
    def digest_file_name(self) -> str:
        return f"{self.name}.sha256"

    @property
    def digest_file_content(self) -> str:
        return digest_file_content(self.digest, self.name)

    def artifact(self, name: str) -> ArchiveArtifact | None:
        for a in self.artifacts:
            if a.name == name:
                return a
        return None


def serialize_manifest(manifest: ArchiveManifest) -> bytes:
    data = manifest.model_dump(mode="json", by_alias=True, exclude_none=True)
    return (json.dumps(data, sort_keys=True, indent=2) + "\n").encode("utf-8")


class ArchiveExporter:
    """Builds archive bundles for approved (or, if allowed, draft) records."""

    def __init__(
        self,
        *,
        hasher: Hasher | None = None,
        wallet: Any = None,
        clock: Clock | None = None,
        currency_code: str = "EUR",
        currency_symbol: str = "",
        prefix: str = "quiz_archive",
        allow_draft: bool = False,
    ):
        self.hasher = hasher
        self.wallet = wallet
        self.clock = clock or utcnow
        self.currency_code = currency_code
        self.currency_symbol = currency_symbol
        self.prefix = prefix
        self.allow_draft = allow_draft

    def build_archive(
        self,
        record: ReconciliationRecord,
        totals: Totals,
        players: Iterable[PlayerRecord] = (),
        leaderboard: Iterable[LeaderboardEntry] = (),
        payments: Iterable[PaymentLedgerEntry] = (),
    ) -> ArchiveBundle:
        """Render, hash and package a record.

        ``totals`` must come from the same payment snapshot passed in
        ``payments``; the exporter never recomputes them.

        Raises:
            ValidationError: record not approved and drafts not allowed.
            RenderError: an artifact could not be rendered.
            IntegrityUnavailable: no usable SHA-256 implementation.
        """
        draft = not record.is_approved
        if draft and not self.allow_draft:
            raise ValidationError(
                "reconciliation must be approved before export",
                reason="not_approved",
                details={"room_id": record.room_id},
            )
        if not record.room_id:
            raise RenderError("roomId required", reason="missing_field")

        hasher = resolve_hasher(self.hasher)
        ctx = ReportContext(
            record=record,
            totals=totals,
            award_summary=summarize_awards(record.prize_awards),
            players=list(players),
            leaderboard=list(leaderboard),
            payments=list(payments),
            currency_code=self.currency_code,
            currency_symbol=self.currency_symbol,
            draft=draft,
        )

        artifacts: list[ArchiveArtifact] = []
        for name, render in ARTIFACTS:
            try:
                content = render(ctx)
            except ReconciliationError:
                raise
            except Exception as e:
                bt.logging.error({
                    "recon_archive_render_failed": {
                        "room_id": record.room_id,
                        "artifact": name,
                        "error": str(e),
                    }
                })
                raise RenderError(
                    f"failed to render {name}",
                    reason="render_failed",
                    details={"artifact": name, "error": type(e).__name__},
                ) from e
            artifacts.append(ArchiveArtifact(
                name=name, content=content, sha256=hasher.hexdigest(content),
            ))

        created_at = self.clock()
        manifest = ArchiveManifest(
            algorithm=hasher.algorithm,
            created_at=created_at,
            files=[
                ManifestFile(name=a.name, size=a.size, sha256=a.sha256)
                for a in artifacts
            ],
            room_id=record.room_id,
            schema_version=ARCHIVE_SCHEMA_VERSION,
            status="draft" if draft else "approved",
        )
        if self.wallet is not None:
            sign_manifest(manifest, self.wallet)
        manifest_bytes = serialize_manifest(manifest)

        container = pack_zip(
            [(a.name, a.content) for a in artifacts] + [(MANIFEST_NAME, manifest_bytes)]
        )
        digest = hasher.hexdigest(container)

        stamp = created_at.strftime("%Y%m%dT%H%M%SZ")
        suffix = "_DRAFT" if draft else ""
        bundle = ArchiveBundle(
            name=f"{self.prefix}_{record.room_id}_{stamp}{suffix}.zip",
            artifacts=artifacts,
            manifest=manifest,
            manifest_bytes=manifest_bytes,
            container=container,
            digest=digest,
            draft=draft,
            totals=totals,
        )

        bt.logging.info({
            "recon_archive": {
                "room_id": record.room_id,
                "bundle": bundle.name,
                "files": len(artifacts),
                "bytes": len(container),
                "sha256": digest,
                "draft": draft,
                "signed": manifest.signature is not None,
            }
        })
        return bundle


def build_archive(
    record: ReconciliationRecord,
    totals: Totals,
    players: Iterable[PlayerRecord] = (),
    leaderboard: Iterable[LeaderboardEntry] = (),
    payments: Iterable[PaymentLedgerEntry] = (),
    **options: Any,
) -> ArchiveBundle:
    return ArchiveExporter(**options).build_archive(
        record, totals, players, leaderboard, payments,
    )


def export_snapshot(
    record: ReconciliationRecord,
    payments: Iterable[PaymentLedgerEntry],
    entry_fee: Any,
    players: Iterable[PlayerRecord] = (),
    leaderboard: Iterable[LeaderboardEntry] = (),
    exporter: ArchiveExporter | None = None,
) -> ArchiveBundle:
    """Compute totals once and export from that single snapshot."""
    payments = list(payments)
    totals = compute_totals(payments, record.ledger, entry_fee)
    return (exporter or ArchiveExporter()).build_archive(
        record, totals, players, leaderboard, payments,
    )


__all__ = [
    "ArchiveArtifact",
    "ArchiveBundle",
    "ArchiveExporter",
    "build_archive",
    "export_snapshot",
    "serialize_manifest",
]
