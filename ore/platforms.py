"""Known platforms and dependency-version resolution.

A plugin declares platforms the same way it declares any other dependency
(``spongeapi@7.2.0``).  Resolution matches each dependency id against the
static ``PLATFORMS`` table and derives a *coarse* version (``7.2``) used for
filtering and display.  Anything that cannot be resolved cleanly produces a
human-readable warning; warnings never block an upload.
"""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

_NUMERIC_VERSION = re.compile(r"^\d+(?:\.\d+)*")


@dataclass(frozen=True)
class Platform:
    """A platform Ore knows how to tag.

    ``coarse_parts`` is how many leading numeric components make up the
    coarse version (2 → ``7.2.0`` becomes ``7.2``).
    """

    id: str
    name: str
    coarse_parts: int = 2


@dataclass(frozen=True)
class VersionedPlatform:
    """A platform dependency resolved from plugin metadata."""

    id: str
    name: str
    version: str | None
    coarse_version: str | None


PLATFORMS: tuple[Platform, ...] = (
    Platform(id="spongeapi", name="Sponge"),
    Platform(id="spongeforge", name="SpongeForge"),
    Platform(id="spongevanilla", name="SpongeVanilla"),
    Platform(id="forge", name="Forge"),
    Platform(id="lantern", name="Lantern"),
)

_PLATFORMS_BY_ID: dict[str, Platform] = {p.id: p for p in PLATFORMS}


def get_platform(platform_id: str) -> Platform | None:
    """Return the known platform with *platform_id*, or ``None``."""
    return _PLATFORMS_BY_ID.get(platform_id.lower())


def _lower_bound(raw: str) -> str | None:
    """Reduce a raw dependency version to the version it requires at least.

    Plain versions are returned as-is.  Maven-style ranges (``[7.1,8.0)``,
    ``[7.1]``) yield their lower bound; a range without one (``(,7.0]``)
    yields ``None``.
    """
    raw = raw.strip()
    if raw[:1] in ("[", "("):
        inner = raw[1:].rstrip("])").split(",", 1)[0].strip()
        return inner or None
    return raw


def coarse_version(platform: Platform, version: str) -> str | None:
    """Return the coarse form of *version* for *platform*, or ``None``.

    ``None`` means the version does not start with a numeric version and
    cannot be coarsened.
    """
    match = _NUMERIC_VERSION.match(version)
    if match is None:
        return None
    parts = match.group(0).split(".")
    return ".".join(parts[: platform.coarse_parts])


def create_versioned_platforms(
    dependency_ids: Sequence[str],
    dependency_versions: Sequence[str | None],
) -> tuple[list[str], list[VersionedPlatform]]:
    """Resolve dependencies against the platform table.

    Args:
        dependency_ids: Dependency identifiers, flattened over all entries.
        dependency_versions: Raw version strings aligned with
            ``dependency_ids``; ``None`` where the plugin gave no version.

    Returns:
        ``(warnings, platforms)`` — one warning per dependency that is not a
        known platform, or whose version is missing or ambiguous, and the
        list of recognised platforms in declaration order.
    """
    warnings: list[str] = []
    platforms: list[VersionedPlatform] = []

    for dep_id, raw_version in zip(dependency_ids, dependency_versions):
        platform = get_platform(dep_id)
        if platform is None:
            shown = f" (version '{raw_version}')" if raw_version else ""
            warnings.append(
                f"Dependency '{dep_id}'{shown} is not a known platform and was not checked"
            )
            continue

        if not raw_version or not raw_version.strip():
            warnings.append(f"Missing version for platform {platform.name} ('{dep_id}')")
            platforms.append(VersionedPlatform(platform.id, platform.name, None, None))
            continue

        bound = _lower_bound(raw_version)
        coarse = coarse_version(platform, bound) if bound else None
        if coarse is None:
            warnings.append(
                f"Could not determine a version of {platform.name} from '{raw_version}'"
            )
            platforms.append(
                VersionedPlatform(platform.id, platform.name, raw_version.strip(), None)
            )
            continue

        platforms.append(VersionedPlatform(platform.id, platform.name, bound, coarse))

    return warnings, platforms
