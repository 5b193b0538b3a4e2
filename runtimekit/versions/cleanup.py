"""
Removal of state left behind by interrupted operations.

A cancelled process can leave:
- staging directories under tmp/
- partial downloads (``*.part``) and archives under cache/downloads/
- store directories that were published but never registered
- activation links whose target was deleted
- lock files

Everything is removed only when no live process can be using it: staging
and store directories are deleted only after taking the matching install
lock without blocking.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from runtimekit.core.directory import DataLayout
from runtimekit.core.filesystem import FilesystemError, directory_size, safe_rmtree
from runtimekit.core.locking import LockManager, LockTimeout
from runtimekit.core.registry import VersionRegistry
from runtimekit.runtimes.base import RuntimePlugin
from runtimekit.versions.activation import Activator

logger = logging.getLogger(__name__)

_STAGE_RE = re.compile(r"^stage-(?P<runtime>[a-z]+)-(?P<version>.+)-[A-Za-z0-9_]+$")


@dataclass
class CleanupResult:
    """Result of cleanup operation."""

    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    space_reclaimed: int = 0
    locks_removed: int = 0


class CleanupManager:
    """Cleans leftovers from tmp/, the download cache, the store and current/."""

    def __init__(
        self,
        layout: DataLayout,
        lock_manager: LockManager,
        plugins: Sequence[RuntimePlugin],
        registries: Optional[Sequence[VersionRegistry]] = None,
        part_max_age_seconds: float = 3600,
        lock_max_age_hours: float = 24,
    ):
        """
        Initialize cleanup manager.

        Args:
            layout: Data directory layout
            lock_manager: Lock manager
            plugins: Runtimes whose store and activation point are cleaned
            registries: Registries matching plugins (created if None)
            part_max_age_seconds: Partial downloads younger than this may
                belong to a running download and are kept
            lock_max_age_hours: Age after which unheld lock files are removed
        """
        self.layout = layout
        self.lock_manager = lock_manager
        self.plugins = list(plugins)
        self.registries = list(registries) if registries is not None else [
            VersionRegistry(layout, p.name, lock_manager) for p in self.plugins
        ]
        self.part_max_age_seconds = part_max_age_seconds
        self.lock_max_age_hours = lock_max_age_hours

    def clean(self) -> CleanupResult:
        """
        Remove every kind of leftover. Safe to run repeatedly.

        Returns:
            CleanupResult
        """
        result = CleanupResult()
        self._clean_tmp(result)
        self._clean_downloads(result)
        for plugin, registry in zip(self.plugins, self.registries):
            self._clean_store(plugin, registry, result)
            self._clean_activation(plugin, result)
        result.locks_removed = self.lock_manager.cleanup_stale_locks(self.lock_max_age_hours)

        logger.info(
            f"Cleanup removed {len(result.removed)} item(s), "
            f"reclaimed {result.space_reclaimed / 1024 / 1024:.1f} MB"
        )
        return result

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _remove(self, path: Path, prefix: Path, result: CleanupResult) -> None:
        try:
            if path.is_symlink() or path.is_file():
                size = 0 if path.is_symlink() else path.stat().st_size
                path.unlink()
            else:
                size = directory_size(path)
                safe_rmtree(path, require_prefix=prefix)
        except (FilesystemError, OSError) as e:
            logger.error(f"Failed to remove {path}: {e}")
            result.errors.append(f"{path}: {e}")
            return
        result.removed.append(str(path))
        result.space_reclaimed += size
        logger.debug(f"Removed {path}")

    def _clean_tmp(self, result: CleanupResult) -> None:
        tmp_dir = self.layout.tmp_dir
        if not tmp_dir.is_dir():
            return

        for entry in tmp_dir.iterdir():
            match = _STAGE_RE.match(entry.name)
            if match is None:
                self._remove(entry, tmp_dir, result)
                continue

            with self.lock_manager.try_install_lock(
                match.group("runtime"), match.group("version")
            ) as acquired:
                if acquired:
                    self._remove(entry, tmp_dir, result)
                else:
                    result.skipped.append(f"{entry}: install in progress")

    def _clean_downloads(self, result: CleanupResult) -> None:
        downloads = self.layout.downloads_dir
        if not downloads.is_dir():
            return

        now = time.time()
        for entry in downloads.iterdir():
            if entry.name.endswith(".part"):
                age = now - entry.stat().st_mtime
                if age < self.part_max_age_seconds:
                    result.skipped.append(f"{entry}: download may be in progress")
                    continue
            self._remove(entry, downloads, result)

    def _clean_store(
        self, plugin: RuntimePlugin, registry: VersionRegistry, result: CleanupResult
    ) -> None:
        store = self.layout.store_dir(plugin.name)
        if not store.is_dir():
            return

        for entry in store.iterdir():
            version = entry.name
            if registry.is_installed(version):
                continue
            with self.lock_manager.try_install_lock(plugin.name, version) as acquired:
                if not acquired:
                    result.skipped.append(f"{entry}: install in progress")
                    continue
                # Re-check now that no installer can be mid-publish
                if registry.is_installed(version):
                    continue
                logger.info(f"Removing unregistered {plugin.name} {version} at {entry}")
                self._remove(entry, store, result)

    def _clean_activation(self, plugin: RuntimePlugin, result: CleanupResult) -> None:
        current_dir = self.layout.current_dir
        if not current_dir.is_dir():
            return

        try:
            with self.lock_manager.registry_lock(plugin.name, timeout=0):
                for temp in current_dir.glob(f".{plugin.name}.*.tmp"):
                    self._remove(temp, current_dir, result)

                activator = Activator(plugin, self.layout)
                if activator.is_broken():
                    logger.info(f"Removing broken {plugin.name} activation link")
                    activator.deactivate()
                    result.removed.append(str(activator.link_path))
        except LockTimeout:
            result.skipped.append(f"{current_dir}: {plugin.name} registry busy")


__all__ = ["CleanupManager", "CleanupResult"]
