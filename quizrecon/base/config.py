"""Reconciliation settings.

Precedence (highest first): QUIZRECON_* environment variables, CLI
arguments, defaults. A ``.env`` file is loaded first unless
QUIZRECON_TEST_MODE=true.
"""

from __future__ import annotations

import os
from typing import Any

import bittensor as bt
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "QUIZRECON_"

_TRUE = {"1", "true", "yes", "on"}


class ReconciliationSettings(BaseModel):
    currency_code: str = "EUR"
    # Display-only prefix, never parsed back
    currency_symbol: str = "€"
    debounce_seconds: float = Field(default=0.25, ge=0)
    notes_editable_after_approval: bool = False
    allow_draft_export: bool = False
    archive_dir: str = "quizrecon/data/archives"
    archive_prefix: str = "quiz_archive"

    @field_validator("currency_code")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


def _coerce(name: str, raw: str) -> Any:
    field = ReconciliationSettings.model_fields[name]
    if field.annotation is bool:
        return raw.strip().lower() in _TRUE
    return raw


def settings_from_env(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect QUIZRECON_<FIELD> overrides from the environment."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name in ReconciliationSettings.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None and raw != "":
            overrides[name] = _coerce(name, raw)
    return overrides


def load_settings(
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> ReconciliationSettings:
    """Build settings from defaults, ``overrides`` and the environment."""
    env = os.environ if environ is None else environ
    if environ is None and env.get(f"{ENV_PREFIX}TEST_MODE") != "true":
        load_dotenv()

    data: dict[str, Any] = dict(overrides or {})
    data.update(settings_from_env(env))
    settings = ReconciliationSettings(**data)
    bt.logging.debug({"recon_settings": settings.model_dump()})
    return settings


def add_args(parser) -> None:
    """Adds reconciliation arguments to an argparse parser."""
    defaults = ReconciliationSettings()
    parser.add_argument(
        "--recon.currency_code",
        type=str,
        help="ISO currency code written into reports.",
        default=defaults.currency_code,
    )
    parser.add_argument(
        "--recon.currency_symbol",
        type=str,
        help="Display prefix for amounts in the text report.",
        default=defaults.currency_symbol,
    )
    parser.add_argument(
        "--recon.allow_draft_export",
        action="store_true",
        help="Export records that are not yet approved, marked DRAFT.",
        default=defaults.allow_draft_export,
    )
    parser.add_argument(
        "--recon.archive_prefix",
        type=str,
        help="File name prefix for archive bundles.",
        default=defaults.archive_prefix,
    )


def settings_from_args(args) -> ReconciliationSettings:
    """Settings from parsed CLI args; environment still wins."""
    overrides = {
        "currency_code": getattr(args, "recon.currency_code", None),
        "currency_symbol": getattr(args, "recon.currency_symbol", None),
        "allow_draft_export": getattr(args, "recon.allow_draft_export", None),
        "archive_prefix": getattr(args, "recon.archive_prefix", None),
    }
    return load_settings({k: v for k, v in overrides.items() if v is not None})


__all__ = [
    "ENV_PREFIX",
    "ReconciliationSettings",
    "add_args",
    "load_settings",
    "settings_from_args",
    "settings_from_env",
]
