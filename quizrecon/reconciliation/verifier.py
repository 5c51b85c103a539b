"""Archive verification.

Checks the detached container digest, the manifest algorithm and schema,
every listed file's size and hash, unlisted files, and (optionally) the
organizer's signature before a recipient trusts the bundle.
"""

from __future__ import annotations

import json
import zipfile
from dataclasses import dataclass, field

from pydantic import ValidationError as PydanticValidationError

from .integrity import Hasher, parse_digest_file, resolve_hasher, unpack_zip, verify_manifest
from .models import ARCHIVE_SCHEMA_VERSION, ArchiveManifest
from .reports import MANIFEST_NAME


@dataclass
class VerificationResult:
    """Outcome of archive verification."""

    valid: bool
    errors: list[str]
    manifest: ArchiveManifest | None = field(default=None, repr=False)

    def __bool__(self) -> bool:
        return self.valid


class ArchiveVerifier:
    """Verifies archive bundles produced by ArchiveExporter."""

    def __init__(self, hasher: Hasher | None = None):
        self.hasher = resolve_hasher(hasher)

    def verify(
        self,
        container: bytes,
        detached_digest: str | None = None,
        expected_signer: str | None = None,
    ) -> VerificationResult:
        """Verify a container.

        Args:
            container: Raw zip bytes.
            detached_digest: Hex digest or a ``sha256sum`` line. Skipped if None.
            expected_signer: SS58 address that must have signed the manifest.
        """
        errors: list[str] = []

        # Container digest
        if detached_digest is not None:
            try:
                expected = parse_digest_file(detached_digest)
            except ValueError as e:
                errors.append(f"detached digest unreadable: {e}")
            else:
                actual = self.hasher.hexdigest(container)
                if actual != expected:
                    errors.append(
                        f"container digest mismatch: expected {expected[:16]}..., "
                        f"got {actual[:16]}..."
                    )

        try:
            entries = unpack_zip(container)
        except zipfile.BadZipFile as e:
            errors.append(f"container unreadable: {e}")
            return VerificationResult(valid=False, errors=errors)

        raw_manifest = entries.pop(MANIFEST_NAME, None)
        if raw_manifest is None:
            errors.append(f"missing {MANIFEST_NAME}")
            return VerificationResult(valid=False, errors=errors)

        try:
            manifest = ArchiveManifest.model_validate(json.loads(raw_manifest))
        except (ValueError, PydanticValidationError) as e:
            errors.append(f"manifest unreadable: {e}")
            return VerificationResult(valid=False, errors=errors)

        # Algorithm and schema
        if manifest.algorithm != self.hasher.algorithm:
            errors.append(
                f"algorithm mismatch: got {manifest.algorithm}, expected {self.hasher.algorithm}"
            )
        if manifest.schema_version != ARCHIVE_SCHEMA_VERSION:
            errors.append(
                f"schema_version mismatch: got {manifest.schema_version}, "
                f"expected {ARCHIVE_SCHEMA_VERSION}"
            )

        # Listed files
        listed = set()
        for entry in manifest.files:
            listed.add(entry.name)
            content = entries.get(entry.name)
            if content is None:
                errors.append(f"missing file: {entry.name}")
                continue
            if len(content) != entry.size:
                errors.append(
                    f"size mismatch for {entry.name}: expected {entry.size}, got {len(content)}"
                )
            actual = self.hasher.hexdigest(content)
            if actual != entry.sha256:
                errors.append(
                    f"content hash mismatch for {entry.name}: "
                    f"expected {entry.sha256[:16]}..., got {actual[:16]}..."
                )

        # Unlisted files
        for name in sorted(set(entries) - listed):
            errors.append(f"unlisted file: {name}")

        # Signature
        if expected_signer is not None:
            if manifest.signer != expected_signer:
                errors.append(
                    f"signer mismatch: got {manifest.signer}, expected {expected_signer}"
                )
            if not verify_manifest(manifest, expected_signer):
                errors.append("signature verification failed")

        return VerificationResult(valid=len(errors) == 0, errors=errors, manifest=manifest)


__all__ = ["ArchiveVerifier", "VerificationResult"]
