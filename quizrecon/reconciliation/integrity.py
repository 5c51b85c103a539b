"""Hashing, deterministic packaging and manifest signing.

The hashing primitive is an injected capability. When no usable SHA-256
implementation exists the caller gets IntegrityUnavailable; a placeholder
digest is never produced.

The organizer may sign a manifest with a bittensor hotkey. The signature
covers the canonical JSON of the manifest minus the signature itself.
"""

from __future__ import annotations

import hashlib
import io
import json
import zipfile
from typing import TYPE_CHECKING, Any, Iterable, Protocol, runtime_checkable

from .errors import IntegrityUnavailable

if TYPE_CHECKING:
    from .models import ArchiveManifest

# Zip cannot represent timestamps before 1980
FIXED_ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
FIXED_ZIP_MODE = 0o644


# ---------------------------------------------------------------------------
# Hashing capability
# ---------------------------------------------------------------------------


@runtime_checkable
class Hasher(Protocol):
    """Anything that turns bytes into a lowercase hex SHA-256 digest."""

    algorithm: str

    def hexdigest(self, data: bytes) -> str:
        ...


class Sha256Hasher:
    """hashlib-backed SHA-256."""

    algorithm = "SHA-256"

    def __init__(self):
        try:
            hashlib.new("sha256")
        except ValueError as e:
            raise IntegrityUnavailable(
                "sha256 is not available in this runtime",
                reason="hash_unavailable",
            ) from e

    def hexdigest(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()


def resolve_hasher(hasher: Hasher | None = None) -> Hasher:
    """Return ``hasher`` or the hashlib default, checking it is usable."""
    if hasher is None:
        return Sha256Hasher()
    if not isinstance(hasher, Hasher):
        raise IntegrityUnavailable(
            "hasher does not implement hexdigest()",
            reason="hash_unavailable",
        )
    if hasher.algorithm != "SHA-256":
        raise IntegrityUnavailable(
            f"unsupported digest algorithm: {hasher.algorithm}",
            reason="hash_unavailable",
        )
    return hasher


def canonical_json(data: Any) -> bytes:
    """Sorted-key, whitespace-free JSON used for signing."""
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str,
    ).encode("utf-8")


# ---------------------------------------------------------------------------
# Deterministic container
# ---------------------------------------------------------------------------


def pack_zip(entries: Iterable[tuple[str, bytes]]) -> bytes:
    """Build a zip whose bytes depend only on entry names, order and content."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries:
            info = zipfile.ZipInfo(name, date_time=FIXED_ZIP_TIMESTAMP)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = FIXED_ZIP_MODE << 16
            info.create_system = 3
            zf.writestr(info, content, compresslevel=9)
    return buf.getvalue()


def unpack_zip(container: bytes) -> dict[str, bytes]:
    """Read every entry of a zip into memory, preserving order."""
    with zipfile.ZipFile(io.BytesIO(container)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def digest_file_content(digest: str, bundle_name: str) -> str:
    """Detached digest in ``sha256sum`` format."""
    return f"{digest}  {bundle_name}\n"


def parse_digest_file(content: str) -> str:
    """Extract the hex digest from a ``sha256sum`` line or a bare digest."""
    first = content.strip().split()
    if not first:
        raise ValueError("empty digest file")
    digest = first[0].lower()
    if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
        raise ValueError("not a sha256 hex digest")
    return digest


# ---------------------------------------------------------------------------
# Manifest signing
# ---------------------------------------------------------------------------


def _manifest_signing_payload(manifest: ArchiveManifest) -> bytes:
    """Canonical bytes to sign. Excludes the signature field itself."""
    data = manifest.model_dump(mode="json", by_alias=True)
    data.pop("signature", None)
    return hashlib.sha256(canonical_json(data)).hexdigest().encode()


def sign_manifest(manifest: ArchiveManifest, wallet: Any) -> str:
    """Sign a manifest with the organizer's hotkey.

    Sets ``manifest.signer`` to the hotkey address before signing so the
    signer is covered by the signature.

    Returns:
        Hex-encoded signature string (also stored on the manifest).
    """
    manifest.signer = wallet.hotkey.ss58_address
    manifest.signature = None
    signature = wallet.hotkey.sign(_manifest_signing_payload(manifest))
    manifest.signature = signature.hex() if isinstance(signature, bytes) else str(signature)
    return manifest.signature


def verify_manifest(manifest: ArchiveManifest, hotkey_ss58: str) -> bool:
    """Verify a manifest signature against a hotkey.

    Returns:
        True if the signature is valid for the given hotkey.
    """
    import bittensor as bt

    if not manifest.signature:
        return False
    try:
        sig_bytes = bytes.fromhex(manifest.signature)
    except ValueError:
        return False

    try:
        keypair = bt.Keypair(ss58_address=hotkey_ss58)
        return keypair.verify(_manifest_signing_payload(manifest), sig_bytes)
    except Exception:
        return False


__all__ = [
    "FIXED_ZIP_TIMESTAMP",
    "Hasher",
    "Sha256Hasher",
    "canonical_json",
    "digest_file_content",
    "pack_zip",
    "parse_digest_file",
    "resolve_hasher",
    "sign_manifest",
    "unpack_zip",
    "verify_manifest",
]
