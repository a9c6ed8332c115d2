"""Conditional assembly of signing material from base64 secrets.

Profiles are tried most-specific first; the first whose every required
secret is present (and whose ``when`` predicate holds) is selected and its
placements are written below the run workdir. When none qualifies the
zero-requirement fallback is selected and nothing is written.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from shipwright._log import get_logger
from shipwright.errors import ArtifactWriteError, MissingSecretError, SecretDecodeError
from shipwright.pipeline.schema import IMPLICIT_FALLBACK, ArtifactProfileSpec, Placement
from shipwright.predicates import compile_predicate
from shipwright.secrets import SecretVault

logger = get_logger("artifacts")

_WHITESPACE_RE = re.compile(rb"\s+")

Decoder = Callable[[bytes], bytes]


def decode_base64(blob: bytes) -> bytes:
    """Strict base64 decode; embedded newlines and spaces are tolerated."""
    return base64.b64decode(_WHITESPACE_RE.sub(b"", blob), validate=True)


BUILTIN_PROFILES: tuple[ArtifactProfileSpec, ...] = (
    ArtifactProfileSpec(
        name="ios-signed",
        priority=20,
        description="Distribution certificate, provisioning profile and export options",
        requires=(
            "IOS_CERTIFICATE_P12_BASE64",
            "IOS_CERTIFICATE_PASSWORD",
            "IOS_PROVISIONING_PROFILE_BASE64",
            "IOS_EXPORT_OPTIONS_PLIST_BASE64",
            "IOS_KEYCHAIN_PASSWORD",
        ),
        placements=(
            Placement(secret="IOS_CERTIFICATE_P12_BASE64", path="ios/signing/certificate.p12"),
            Placement(
                secret="IOS_PROVISIONING_PROFILE_BASE64",
                path="ios/signing/profile.mobileprovision",
            ),
            Placement(secret="IOS_EXPORT_OPTIONS_PLIST_BASE64", path="ios/ExportOptions.plist"),
        ),
    ),
    ArtifactProfileSpec(
        name="android-signed",
        priority=10,
        when="build_type != 'debug'",
        description="Upload keystore and key.properties; skipped for debug builds",
        requires=("ANDROID_KEYSTORE_BASE64", "ANDROID_KEY_PROPERTIES_BASE64"),
        placements=(
            Placement(secret="ANDROID_KEYSTORE_BASE64", path="android/app/upload-keystore.jks"),
            Placement(secret="ANDROID_KEY_PROPERTIES_BASE64", path="android/key.properties"),
        ),
    ),
    ArtifactProfileSpec(name=IMPLICIT_FALLBACK, fallback=True, description="Unsigned build"),
)


@dataclass
class AssemblyResult:
    profile: str
    fallback: bool
    written: list[Path] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)

    def cleanup(self) -> None:
        """Remove every file this assembly wrote."""
        for path in self.written:
            path.unlink(missing_ok=True)
        if self.written:
            logger.debug(
                "Removed %d signing file(s) for profile '%s'", len(self.written), self.profile
            )
        self.written = []


def order_profiles(profiles: Sequence[ArtifactProfileSpec]) -> list[ArtifactProfileSpec]:
    """Most capability-requiring first, fallback last, declaration order on ties."""
    indexed = list(enumerate(profiles))
    indexed.sort(key=lambda p: (p[1].fallback, -p[1].priority, -len(p[1].requires), p[0]))
    return [p for _, p in indexed]


def _fallback_of(profiles: Iterable[ArtifactProfileSpec]) -> ArtifactProfileSpec:
    for profile in profiles:
        if profile.fallback:
            return profile
    return ArtifactProfileSpec(name=IMPLICIT_FALLBACK, fallback=True)


def select_profile(
    profiles: Sequence[ArtifactProfileSpec],
    vault: SecretVault,
    inputs: Mapping[str, Any],
) -> tuple[ArtifactProfileSpec, list[tuple[str, str]]]:
    """Return the selected profile and ``(profile, reason)`` for every one passed over."""
    skipped: list[tuple[str, str]] = []
    for profile in order_profiles(profiles):
        if profile.fallback:
            continue
        missing = [s for s in profile.requires if not vault.present(s)]
        if missing:
            skipped.append((profile.name, f"missing secret(s): {', '.join(missing)}"))
            continue
        predicate = compile_predicate(profile.when)
        if not predicate.evaluate(_with_defaults(predicate.names, inputs)):
            skipped.append((profile.name, f"condition not met: {predicate.source}"))
            continue
        return profile, skipped
    return _fallback_of(profiles), skipped


def _with_defaults(names: Iterable[str], inputs: Mapping[str, Any]) -> dict[str, Any]:
    # Built-in profiles may reference inputs a pipeline does not declare.
    values = dict(inputs)
    for name in names:
        values.setdefault(name, None)
    return values


def _write(root: Path, placement: Placement, payload: bytes) -> Path:
    target = root / placement.path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload)
    target.chmod(placement.mode)
    return target


def assemble(
    profiles: Sequence[ArtifactProfileSpec],
    vault: SecretVault,
    inputs: Mapping[str, Any],
    workdir: Path,
    *,
    decode: Decoder = decode_base64,
) -> AssemblyResult:
    """Select a profile and place its decoded secrets under *workdir*.

    Raises:
        SecretDecodeError: A present secret is not valid base64.
        ArtifactWriteError: A placement could not be written.

    In both cases files already written for the profile are removed before
    raising.
    """
    profile, skipped = select_profile(profiles, vault, inputs)
    for name, reason in skipped:
        logger.info("Profile '%s' not selected: %s", name, reason)

    result = AssemblyResult(profile=profile.name, fallback=profile.fallback, skipped=skipped)
    if profile.fallback:
        logger.info("Using fallback profile '%s'; no signing material written", profile.name)
        return result

    for placement in profile.placements:
        handle = vault.get(placement.secret)
        if handle is None:
            result.cleanup()
            raise MissingSecretError(placement.secret)
        blob = handle.reveal()
        if placement.encoding == "base64":
            try:
                payload = decode(blob)
            except (binascii.Error, ValueError) as e:
                result.cleanup()
                raise SecretDecodeError(
                    placement.secret, profile=profile.name, reason=str(e)
                ) from None
        else:
            payload = blob
        try:
            result.written.append(_write(workdir, placement, payload))
        except OSError as e:
            # A failed chmod leaves the file written but untracked.
            with contextlib.suppress(OSError):
                (workdir / placement.path).unlink(missing_ok=True)
            result.cleanup()
            raise ArtifactWriteError(
                placement.secret,
                path=placement.path,
                profile=profile.name,
                reason=e.strerror or str(e),
            ) from None

    logger.info(
        "Selected profile '%s' (%d file(s) written)", profile.name, len(result.written)
    )
    return result
