"""Archive command-line entrypoint.

    quizrecon-archive export --input snapshot.json [--out DIR]
    quizrecon-archive verify BUNDLE.zip [--digest FILE] [--signer SS58]

The snapshot is a JSON object with ``record``, ``payments``, ``players``,
``leaderboard`` and ``entryFee``. Exit code 1 on any failure.
"""

import argparse
import json
import os
import sys
from pathlib import Path

import bittensor as bt
from pydantic import ValidationError as PydanticValidationError

from quizrecon.base.config import add_args, settings_from_args
from quizrecon.reconciliation.errors import ReconciliationError
from quizrecon.reconciliation.exporter import ArchiveExporter, export_snapshot
from quizrecon.reconciliation.models import (
    LeaderboardEntry,
    PaymentLedgerEntry,
    PlayerRecord,
    ReconciliationRecord,
)
from quizrecon.reconciliation.verifier import ArchiveVerifier


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quizrecon-archive",
        description="Build and verify reconciliation archives",
    )
    bt.logging.add_args(parser)
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="Build an archive from a JSON snapshot")
    export.add_argument("--input", required=True, help="Snapshot JSON file")
    export.add_argument("--out", help="Output directory (default: recon.archive_dir setting)")
    export.add_argument("--sign", action="store_true", help="Sign the manifest with the wallet hotkey")
    bt.Wallet.add_args(export)
    add_args(export)

    verify = sub.add_parser("verify", help="Verify an archive bundle")
    verify.add_argument("bundle", help="Bundle .zip file")
    verify.add_argument("--digest", help="Detached digest file (default: BUNDLE.sha256 if present)")
    verify.add_argument("--signer", help="SS58 address that must have signed the manifest")
    return parser


def run_export(args) -> int:
    settings = settings_from_args(args)
    snapshot = json.loads(Path(args.input).read_text(encoding="utf-8"))

    record = ReconciliationRecord.model_validate(snapshot.get("record") or {})
    payments = [PaymentLedgerEntry.model_validate(p) for p in snapshot.get("payments", [])]
    players = [PlayerRecord.model_validate(p) for p in snapshot.get("players", [])]
    leaderboard = [LeaderboardEntry.model_validate(e) for e in snapshot.get("leaderboard", [])]

    wallet = None
    if args.sign:
        wallet = bt.Wallet(
            name=os.environ.get("QUIZRECON_WALLET__NAME", getattr(args, "wallet.name", "default")),
            hotkey=os.environ.get("QUIZRECON_WALLET__HOTKEY", getattr(args, "wallet.hotkey", "default")),
        )

    exporter = ArchiveExporter(
        wallet=wallet,
        currency_code=settings.currency_code,
        currency_symbol=settings.currency_symbol,
        prefix=settings.archive_prefix,
        allow_draft=settings.allow_draft_export,
    )
    bundle = export_snapshot(
        record,
        payments,
        snapshot.get("entryFee", 0),
        players=players,
        leaderboard=leaderboard,
        exporter=exporter,
    )

    out_dir = Path(args.out or settings.archive_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / bundle.name).write_bytes(bundle.container)
    (out_dir / bundle.digest_file_name).write_text(bundle.digest_file_content, encoding="utf-8")

    bt.logging.info({
        "archive_export": {
            "bundle": str(out_dir / bundle.name),
            "sha256": bundle.digest,
            "draft": bundle.draft,
        }
    })
    print(bundle.digest_file_content, end="")
    return 0


def run_verify(args) -> int:
    bundle_path = Path(args.bundle)
    container = bundle_path.read_bytes()

    digest_path = Path(args.digest) if args.digest else bundle_path.with_name(bundle_path.name + ".sha256")
    detached = digest_path.read_text(encoding="utf-8") if digest_path.exists() else None
    if args.digest and detached is None:
        bt.logging.error(f"digest file not found: {digest_path}")
        return 1

    result = ArchiveVerifier().verify(container, detached, expected_signer=args.signer)
    if result:
        bt.logging.info({"archive_verify": {"bundle": str(bundle_path), "valid": True}})
        print(f"OK {bundle_path.name}")
        return 0

    bt.logging.error({"archive_verify": {"bundle": str(bundle_path), "errors": result.errors}})
    for err in result.errors:
        print(f"FAIL {err}", file=sys.stderr)
    return 1


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "export":
            code = run_export(args)
        else:
            code = run_verify(args)
    except ReconciliationError as e:
        bt.logging.error({"archive": e.to_dict()})
        code = 1
    except (OSError, ValueError, PydanticValidationError) as e:
        bt.logging.error({"archive": {"error": type(e).__name__, "message": str(e)}})
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
