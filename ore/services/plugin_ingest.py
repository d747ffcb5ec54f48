"""Plugin file ingestion — read an uploaded archive and extract its metadata.

Parsing is pure: it reads the file, never writes anywhere, and never touches
the database.  Persistence happens later in ``ore.services.versions``.

Accepted uploads:
- ``.jar`` — read directly.
- ``.zip`` — must contain exactly one top-level ``.jar``, which is read.

Descriptor sources, first match wins:
1. ``META-INF/sponge_plugins.json`` — ``{"plugins": [{"id", "name", "version",
   "dependencies": [{"id", "version"}]}]}``
2. ``mcmod.info`` — a JSON list (or ``{"modList": [...]}``) of
   ``{"modid", "name", "version", "requiredMods" | "dependencies"}`` where
   dependencies are ``"id@version"`` strings.

Mixin usage is read from the ``MixinConfigs`` attribute of
``META-INF/MANIFEST.MF`` and applies to every entry in the file.
"""
from __future__ import annotations

import asyncio
import io
import json
import logging
import shutil
import uuid
import zipfile
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any, BinaryIO

from ore.errors import ParseError
from ore.platforms import VersionedPlatform, create_versioned_platforms
from ore.util import compact, md5_file, slugify

logger = logging.getLogger(__name__)

SPONGE_DESCRIPTOR = "META-INF/sponge_plugins.json"
MCMOD_DESCRIPTOR = "mcmod.info"
MANIFEST = "META-INF/MANIFEST.MF"

_ACCEPTED_SUFFIXES = (".jar", ".zip")


@dataclass(frozen=True)
class Dependency:
    """A dependency declared by a plugin; ``raw_version`` is kept verbatim."""

    identifier: str
    raw_version: str | None = None


@dataclass(frozen=True)
class PluginEntry:
    """One plugin described by a descriptor (a file may hold several)."""

    id: str
    name: str
    version: str
    dependencies: tuple[Dependency, ...] = field(default_factory=tuple)
    mixin: bool = False


class PluginFileWithData:
    """An uploaded plugin file together with its parsed metadata.

    Derived values (hash, size, platforms...) are computed lazily and cached.
    The MD5 hash depends only on the file bytes.
    """

    def __init__(self, path: Path, user_id: str, entries: list[PluginEntry]) -> None:
        if not entries:
            raise ParseError("Plugin file has no entries")
        self.path = path
        self.user_id = user_id
        self.entries = entries

    @cached_property
    def md5(self) -> str:
        return md5_file(self.path)

    @cached_property
    def file_size(self) -> int:
        return self.path.stat().st_size

    @property
    def file_name(self) -> str:
        return self.path.name

    @cached_property
    def dependency_ids(self) -> list[str]:
        return [d.identifier for e in self.entries for d in e.dependencies]

    @cached_property
    def dependency_versions(self) -> list[str | None]:
        return [d.raw_version for e in self.entries for d in e.dependencies]

    @property
    def version_name(self) -> str:
        return compact(self.entries[0].version)

    @property
    def version_slug(self) -> str:
        return slugify(self.entries[0].version)

    @property
    def uses_mixin(self) -> bool:
        return any(e.mixin for e in self.entries)

    @cached_property
    def _platforms(self) -> tuple[list[str], list[VersionedPlatform]]:
        return create_versioned_platforms(self.dependency_ids, self.dependency_versions)

    @property
    def platform_warnings(self) -> list[str]:
        return self._platforms[0]

    @property
    def versioned_platforms(self) -> list[VersionedPlatform]:
        return self._platforms[1]

    @property
    def warnings(self) -> list[str]:
        return list(self.platform_warnings)

    def delete(self) -> None:
        """Remove the underlying file (used when an upload is abandoned)."""
        self.path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Descriptor parsing
# ---------------------------------------------------------------------------


def _split_dependency(spec: str) -> Dependency:
    """Parse ``"id@version"`` (or ``"id:version"``) into a ``Dependency``."""
    spec = spec.strip()
    for sep in ("@", ":"):
        if sep in spec:
            ident, _, version = spec.partition(sep)
            return Dependency(ident.strip(), version.strip() or None)
    return Dependency(spec, None)


def _require_str(raw: dict[str, Any], key: str, source: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ParseError(f"{source}: plugin entry is missing '{key}'")
    return value.strip()


def _check_version(version: str, source: str) -> str:
    """Reject versions that cannot be used as a single directory name."""
    if (
        version in (".", "..")
        or ".." in version
        or "/" in version
        or "\\" in version
        or any(ord(ch) < 32 or ord(ch) == 127 for ch in version)
    ):
        raise ParseError(f"{source}: version {version!r} may not contain '/', '\\', '..' or control characters")
    return version


def _parse_sponge_plugins(data: Any, mixin: bool) -> list[PluginEntry]:
    if not isinstance(data, dict) or not isinstance(data.get("plugins"), list):
        raise ParseError(f"{SPONGE_DESCRIPTOR}: expected an object with a 'plugins' list")
    entries: list[PluginEntry] = []
    for raw in data["plugins"]:
        if not isinstance(raw, dict):
            raise ParseError(f"{SPONGE_DESCRIPTOR}: plugin entries must be objects")
        deps: list[Dependency] = []
        for dep in raw.get("dependencies") or []:
            if isinstance(dep, dict) and isinstance(dep.get("id"), str):
                version = dep.get("version")
                deps.append(Dependency(dep["id"], str(version) if version is not None else None))
            elif isinstance(dep, str):
                deps.append(_split_dependency(dep))
            else:
                raise ParseError(f"{SPONGE_DESCRIPTOR}: malformed dependency {dep!r}")
        plugin_id = _require_str(raw, "id", SPONGE_DESCRIPTOR)
        entries.append(
            PluginEntry(
                id=plugin_id,
                name=str(raw.get("name") or plugin_id),
                version=_check_version(_require_str(raw, "version", SPONGE_DESCRIPTOR), SPONGE_DESCRIPTOR),
                dependencies=tuple(deps),
                mixin=mixin,
            )
        )
    return entries


def _parse_mcmod(data: Any, mixin: bool) -> list[PluginEntry]:
    if isinstance(data, dict):
        data = data.get("modList")
    if not isinstance(data, list):
        raise ParseError(f"{MCMOD_DESCRIPTOR}: expected a list of mods")
    entries: list[PluginEntry] = []
    for raw in data:
        if not isinstance(raw, dict):
            raise ParseError(f"{MCMOD_DESCRIPTOR}: mod entries must be objects")
        raw_deps = raw.get("requiredMods") or raw.get("dependencies") or []
        if not isinstance(raw_deps, list):
            raise ParseError(f"{MCMOD_DESCRIPTOR}: dependencies must be a list")
        mod_id = _require_str(raw, "modid", MCMOD_DESCRIPTOR)
        entries.append(
            PluginEntry(
                id=mod_id,
                name=str(raw.get("name") or mod_id),
                version=_check_version(_require_str(raw, "version", MCMOD_DESCRIPTOR), MCMOD_DESCRIPTOR),
                dependencies=tuple(_split_dependency(str(d)) for d in raw_deps),
                mixin=mixin,
            )
        )
    return entries


def _manifest_uses_mixin(jar: zipfile.ZipFile) -> bool:
    try:
        manifest = jar.read(MANIFEST).decode("utf-8", errors="replace")
    except KeyError:
        return False
    return any(line.split(":", 1)[0].strip() == "MixinConfigs" for line in manifest.splitlines())


def _read_json(jar: zipfile.ZipFile, name: str) -> Any:
    try:
        return json.loads(jar.read(name).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError(f"{name} is not valid JSON: {exc}") from exc


def parse_jar(jar: zipfile.ZipFile) -> list[PluginEntry]:
    """Extract plugin entries from an open JAR.

    Raises:
        ParseError: If no descriptor is present or it is malformed.
    """
    names = set(jar.namelist())
    mixin = _manifest_uses_mixin(jar)
    if SPONGE_DESCRIPTOR in names:
        entries = _parse_sponge_plugins(_read_json(jar, SPONGE_DESCRIPTOR), mixin)
    elif MCMOD_DESCRIPTOR in names:
        entries = _parse_mcmod(_read_json(jar, MCMOD_DESCRIPTOR), mixin)
    else:
        raise ParseError("No plugin metadata found (expected sponge_plugins.json or mcmod.info)")
    if not entries:
        raise ParseError("Plugin metadata declares no plugins")
    return entries


def _open_inner_jar(archive: zipfile.ZipFile) -> zipfile.ZipFile:
    jars = [n for n in archive.namelist() if n.lower().endswith(".jar") and "/" not in n.strip("/")]
    if len(jars) != 1:
        raise ParseError(f"A .zip upload must contain exactly one top-level .jar (found {len(jars)})")
    return zipfile.ZipFile(io.BytesIO(archive.read(jars[0])))


def load_plugin_file(path: Path, user_id: str) -> PluginFileWithData:
    """Parse the plugin archive at *path*.

    Args:
        path: Location of the uploaded file; its name must end in .jar or .zip.
        user_id: The uploading user.

    Returns:
        A ``PluginFileWithData`` handle over *path*.

    Raises:
        ParseError: If the file is not a readable plugin archive.
    """
    if not path.name.lower().endswith(_ACCEPTED_SUFFIXES):
        raise ParseError(f"Unsupported file type: {path.name} (expected .jar or .zip)")
    try:
        with zipfile.ZipFile(path) as archive:
            if path.name.lower().endswith(".zip"):
                with _open_inner_jar(archive) as jar:
                    entries = parse_jar(jar)
            else:
                entries = parse_jar(archive)
    except zipfile.BadZipFile as exc:
        raise ParseError(f"{path.name} is not a valid archive: {exc}") from exc
    except RuntimeError as exc:
        # Encrypted entries, or NotImplementedError for an unsupported compression method.
        raise ParseError(f"{path.name} cannot be read: {exc}") from exc
    logger.info("✅ Parsed plugin %s %s (%d entries)", entries[0].id, entries[0].version, len(entries))
    return PluginFileWithData(path, user_id, entries)


# ---------------------------------------------------------------------------
# Upload intake
# ---------------------------------------------------------------------------


def _safe_filename(filename: str) -> str:
    name = Path(filename or "").name
    if not name:
        raise ParseError("Upload has no filename")
    return name


def _store_stream(stream: BinaryIO, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as out:
        shutil.copyfileobj(stream, out)


async def ingest_upload(
    stream: BinaryIO,
    filename: str,
    user_id: str,
    tmp_dir: Path,
) -> PluginFileWithData:
    """Save an uploaded stream under *tmp_dir* and parse it.

    The file is written to a fresh per-upload directory so that concurrent
    uploads with the same filename never collide.  On ``ParseError`` the
    temporary file is removed before the error propagates.
    """
    target = tmp_dir / str(uuid.uuid4()) / _safe_filename(filename)
    await asyncio.to_thread(_store_stream, stream, target)
    try:
        return await asyncio.to_thread(load_plugin_file, target, user_id)
    except ParseError:
        await asyncio.to_thread(shutil.rmtree, target.parent, True)
        raise
