"""On-disk layout for plugin files and project icons.

Layout under ``settings.uploads_dir``::

    plugins/<owner>/<project>/<version>/<file.jar>
    icons/<owner>/<project>/<icon file>
    tmp/<upload id>/<file.jar>

Owner, project and version names become single path components and every
derived path is checked to stay inside its root (``UnsafePath`` otherwise),
so no name can point a copy or an ``rmtree`` elsewhere.

Every blocking filesystem call goes through ``asyncio.to_thread``.  Deleting a
directory's contents fans out across a bounded number of concurrent workers;
sibling deletions have no ordering guarantee.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from ore.config import settings
from ore.errors import UnsafePath

logger = logging.getLogger(__name__)


class ProjectFiles:
    """Resolves and manipulates the files belonging to projects."""

    def __init__(self, root: Path, max_workers: int = 4) -> None:
        self.root = root
        self._max_workers = max(1, max_workers)

    @property
    def plugins_dir(self) -> Path:
        return self.root / "plugins"

    @property
    def icons_dir(self) -> Path:
        return self.root / "icons"

    @property
    def tmp_dir(self) -> Path:
        return self.root / "tmp"

    def _within(self, base: Path, *segments: str) -> Path:
        """Join *segments* under *base*, refusing anything that escapes it.

        Each segment must be a single path component; the joined path must
        still resolve strictly inside *base*.

        Raises:
            UnsafePath: If a segment is empty, ``.``/``..``, contains a path
                separator, or the result resolves outside *base*.
        """
        for segment in segments:
            if segment in ("", ".", "..") or "/" in segment or "\\" in segment or "\x00" in segment:
                raise UnsafePath(f"Unsafe path component {segment!r}")
        path = base.joinpath(*segments)
        resolved_base = base.resolve()
        if resolved_base not in path.resolve().parents:
            raise UnsafePath(f"{path} is outside {base}")
        return path

    def project_dir(self, owner: str, name: str) -> Path:
        return self._within(self.plugins_dir, owner, name)

    def version_dir(self, owner: str, name: str, version: str) -> Path:
        return self._within(self.plugins_dir, owner, name, version)

    def icon_dir(self, owner: str, name: str) -> Path:
        return self._within(self.icons_dir, owner, name)

    # -----------------------------------------------------------------------
    # Icons
    # -----------------------------------------------------------------------

    async def get_icon_path(self, owner: str, name: str) -> Path | None:
        """Return the project's custom icon, or ``None`` when it has none."""

        def _first_file() -> Path | None:
            directory = self.icon_dir(owner, name)
            if not directory.is_dir():
                return None
            files = sorted(p for p in directory.iterdir() if p.is_file())
            return files[0] if files else None

        return await asyncio.to_thread(_first_file)

    async def replace_icon(self, owner: str, name: str, source: Path, filename: str) -> Path:
        """Make *source* the project's only icon file and return its new path."""
        directory = self.icon_dir(owner, name)
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        await self.clear_dir(directory)
        target = self._within(directory, Path(filename).name)
        await asyncio.to_thread(shutil.move, str(source), str(target))
        logger.info("✅ Replaced icon for %s/%s", owner, name)
        return target

    async def reset_icon(self, owner: str, name: str) -> None:
        """Delete any custom icon so the owner's avatar is shown instead."""
        icon = await self.get_icon_path(owner, name)
        if icon is not None:
            await self.delete_files([icon])
            logger.info("✅ Reset icon for %s/%s", owner, name)

    # -----------------------------------------------------------------------
    # Plugin files
    # -----------------------------------------------------------------------

    async def store_version_file(self, source: Path, owner: str, name: str, version: str) -> Path:
        """Copy an ingested upload into its permanent location."""
        target = self.version_dir(owner, name, version) / source.name

        def _copy() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)

        await asyncio.to_thread(_copy)
        return target

    async def delete_version_dir(self, owner: str, name: str, version: str) -> None:
        await asyncio.to_thread(
            shutil.rmtree, self.version_dir(owner, name, version), True
        )

    async def delete_project(self, owner: str, name: str) -> None:
        """Remove every plugin file and icon of a project."""
        await asyncio.to_thread(shutil.rmtree, self.project_dir(owner, name), True)
        await asyncio.to_thread(shutil.rmtree, self.icon_dir(owner, name), True)

    async def delete_upload(self, path: Path) -> None:
        """Remove a temporary upload together with its per-upload directory."""
        directory = self._within(self.tmp_dir, path.parent.name)
        if path.parent.resolve() != directory.resolve():
            raise UnsafePath(f"{path} is not a staged upload")
        await asyncio.to_thread(shutil.rmtree, directory, True)

    # -----------------------------------------------------------------------
    # Bulk deletion
    # -----------------------------------------------------------------------

    async def delete_files(self, paths: Iterable[Path]) -> None:
        """Delete *paths* concurrently, at most ``max_workers`` at a time."""
        semaphore = asyncio.Semaphore(self._max_workers)

        async def _delete(path: Path) -> None:
            async with semaphore:
                await asyncio.to_thread(path.unlink, missing_ok=True)

        await asyncio.gather(*(_delete(p) for p in paths))

    async def clear_dir(self, directory: Path) -> None:
        """Delete every regular file directly inside *directory*."""

        def _list() -> list[Path]:
            if not directory.is_dir():
                return []
            return [p for p in directory.iterdir() if p.is_file()]

        await self.delete_files(await asyncio.to_thread(_list))


def get_project_files() -> ProjectFiles:
    """FastAPI dependency: the file layout rooted at ``settings.uploads_dir``."""
    return ProjectFiles(Path(settings.uploads_dir), settings.nio_blocking_workers)
