"""
Per-runtime version registry.

This module owns the persisted state of one runtime: which versions are
installed, the user-defined aliases and the active pointer. Every mutation
holds the runtime's registry lock across its read-modify-write cycle and
writes the document atomically, so concurrent shells never corrupt it.
Reads take no lock.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from runtimekit.core.directory import DataLayout
from runtimekit.core.exceptions import (
    RegistryError,
    RegistryLockTimeout,
    VersionNotInstalled,
)
from runtimekit.core.filesystem import atomic_write, is_relative_to
from runtimekit.core.locking import LockManager, LockTimeout

logger = logging.getLogger(__name__)

REGISTRY_FORMAT_VERSION = 1


@dataclass(frozen=True)
class InstalledVersion:
    """
    A verified, published install.

    Attributes:
        runtime: Runtime name
        version: Normalized version string (e.g. '18.17.0')
        path: Absolute install directory
        installed_at: When the install was registered
        source: 'download' or 'migrated:<tool>'
        external: True when files live in a foreign tool's tree
    """

    runtime: str
    version: str
    path: Path
    installed_at: datetime
    source: str = "download"
    external: bool = False


@dataclass
class RemovalResult:
    """Outcome of removing an install record."""

    record: InstalledVersion
    cleared_active: bool = False
    dangling_aliases: List[str] = field(default_factory=list)


def _empty_document(runtime: str) -> dict:
    return {
        "version": REGISTRY_FORMAT_VERSION,
        "runtime": runtime,
        "installed": {},
        "aliases": {},
        "active": None,
    }


class VersionRegistry:
    """
    Registry document of one runtime (``registry/<runtime>.json``).

    Example:
        >>> registry = VersionRegistry(layout, "node", LockManager(layout.lock_dir))
        >>> registry.add_install(record)
        >>> registry.set_alias("work", "18.17.0")
        >>> registry.set_active("work")
        >>> registry.effective_active()
        '18.17.0'
    """

    def __init__(
        self,
        layout: DataLayout,
        runtime: str,
        lock_manager: Optional[LockManager] = None,
        lock_timeout: float = 30,
    ):
        """
        Initialize registry.

        Args:
            layout: Data directory layout
            runtime: Runtime name
            lock_manager: Lock manager (created on layout.lock_dir if None)
            lock_timeout: Timeout in seconds for acquiring the registry lock
        """
        self.layout = layout
        self.runtime = runtime
        self.registry_path = layout.registry_file(runtime)
        self.lock_manager = lock_manager or LockManager(layout.lock_dir)
        self.lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict:
        """
        Load the registry document from disk.

        Returns:
            Registry data dictionary (empty document if the file is missing)

        Raises:
            RegistryError: If the document is unreadable or malformed
        """
        if not self.registry_path.exists():
            return _empty_document(self.runtime)

        try:
            with open(self.registry_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to load {self.runtime} registry: {e}")
            raise RegistryError(
                f"Corrupt {self.runtime} registry at {self.registry_path}: {e}"
            ) from e

        if (
            not isinstance(data, dict)
            or not isinstance(data.get("installed"), dict)
            or not isinstance(data.get("aliases"), dict)
        ):
            raise RegistryError(
                f"Corrupt {self.runtime} registry at {self.registry_path}: "
                "missing 'installed' or 'aliases' mapping"
            )
        if data.get("version", REGISTRY_FORMAT_VERSION) > REGISTRY_FORMAT_VERSION:
            raise RegistryError(
                f"{self.registry_path} was written by a newer runtimekit "
                f"(format {data['version']})"
            )

        data.setdefault("active", None)
        return data

    def _save(self, data: dict) -> None:
        try:
            atomic_write(self.registry_path, json.dumps(data, indent=2, ensure_ascii=False))
        except OSError as e:
            logger.error(f"Failed to save {self.runtime} registry: {e}")
            raise RegistryError(f"Failed to save registry {self.registry_path}: {e}") from e

    @contextmanager
    def _lock(self) -> Iterator[None]:
        try:
            with self.lock_manager.registry_lock(self.runtime, timeout=self.lock_timeout):
                yield
        except LockTimeout as e:
            raise RegistryLockTimeout(
                f"Could not acquire {self.runtime} registry lock within "
                f"{self.lock_timeout} seconds"
            ) from e

    @contextmanager
    def transaction(self) -> Iterator[dict]:
        """
        Lock, load and yield the document; save it if the block succeeds.

        The lock is not re-entrant: do not call other mutating methods of
        this registry inside the block.

        Yields:
            Mutable registry document
        """
        with self._lock():
            data = self._load()
            yield data
            self._save(data)

    # ------------------------------------------------------------------
    # Record conversion
    # ------------------------------------------------------------------

    def _encode_path(self, path: Path) -> str:
        path = Path(path)
        if is_relative_to(path, self.layout.root):
            return path.relative_to(self.layout.root).as_posix()
        return str(path)

    def _decode_path(self, stored: str) -> Path:
        path = Path(stored)
        return path if path.is_absolute() else self.layout.root / path

    def _record(self, version: str, entry: dict) -> InstalledVersion:
        try:
            installed_at = datetime.fromisoformat(entry["installed_at"])
            return InstalledVersion(
                runtime=self.runtime,
                version=version,
                path=self._decode_path(entry["path"]),
                installed_at=installed_at,
                source=entry.get("source", "download"),
                external=bool(entry.get("external", False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryError(
                f"Corrupt entry for {self.runtime} {version} in {self.registry_path}: {e}"
            ) from e

    @staticmethod
    def _effective(data: dict, token: Optional[str]) -> Optional[str]:
        if token is None:
            return None
        return data["aliases"].get(token, token)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_install(
        self,
        version: str,
        path: Path,
        source: str = "download",
        external: bool = False,
    ) -> InstalledVersion:
        """
        Register a verified install.

        Records are write-once: registering a version that is already
        present leaves the existing record untouched and returns it.

        Args:
            version: Normalized version string
            path: Install directory
            source: 'download' or 'migrated:<tool>'
            external: True if files stay inside a foreign tool's tree

        Returns:
            The registered InstalledVersion
        """
        with self.transaction() as data:
            existing = data["installed"].get(version)
            if existing is not None:
                logger.debug(f"{self.runtime} {version} already registered")
                return self._record(version, existing)

            entry = {
                "path": self._encode_path(path),
                "installed_at": datetime.now().isoformat(),
                "source": source,
                "external": external,
            }
            data["installed"][version] = entry

        logger.info(f"Registered {self.runtime} {version} ({source})")
        return self._record(version, entry)

    def remove_install(self, version: str) -> RemovalResult:
        """
        Unregister an install.

        Clears the active pointer if it (directly or through an alias)
        selects the removed version. Aliases are kept and reported.

        Args:
            version: Normalized version string

        Returns:
            RemovalResult with the removed record

        Raises:
            VersionNotInstalled: If the version is not registered
        """
        with self.transaction() as data:
            entry = data["installed"].pop(version, None)
            if entry is None:
                raise VersionNotInstalled(self.runtime, version)

            cleared = self._effective(data, data["active"]) == version
            if cleared:
                data["active"] = None

            dangling = sorted(
                name for name, target in data["aliases"].items() if target == version
            )

        result = RemovalResult(
            record=self._record(version, entry),
            cleared_active=cleared,
            dangling_aliases=dangling,
        )
        logger.info(f"Unregistered {self.runtime} {version}")
        if cleared:
            logger.info(f"Cleared active {self.runtime} version")
        for name in dangling:
            logger.warning(f"Alias '{name}' now points to missing {self.runtime} {version}")
        return result

    def set_alias(self, name: str, version: str) -> None:
        """
        Create or replace an alias.

        Raises:
            VersionNotInstalled: If the target is not installed
        """
        with self.transaction() as data:
            if version not in data["installed"]:
                raise VersionNotInstalled(self.runtime, version, via=f"alias '{name}'")
            data["aliases"][name] = version
        logger.info(f"Alias {self.runtime} '{name}' -> {version}")

    def remove_alias(self, name: str) -> bool:
        """Delete an alias. Returns False if it did not exist."""
        with self.transaction() as data:
            removed = data["aliases"].pop(name, None) is not None
        if removed:
            logger.info(f"Removed {self.runtime} alias '{name}'")
        return removed

    def set_active(self, token: Optional[str]) -> None:
        """Persist the active pointer (a version or alias name), or clear it."""
        with self.transaction() as data:
            data["active"] = token
        logger.debug(f"Active {self.runtime} pointer set to {token!r}")

    # ------------------------------------------------------------------
    # Reads (lock-free)
    # ------------------------------------------------------------------

    def installed(self) -> List[InstalledVersion]:
        data = self._load()
        return [self._record(v, e) for v, e in data["installed"].items()]

    def get(self, version: str) -> Optional[InstalledVersion]:
        entry = self._load()["installed"].get(version)
        return self._record(version, entry) if entry is not None else None

    def is_installed(self, version: str) -> bool:
        return version in self._load()["installed"]

    def aliases(self) -> Dict[str, str]:
        return dict(self._load()["aliases"])

    def active(self) -> Optional[str]:
        return self._load()["active"]

    def effective_active(self) -> Optional[str]:
        """Active pointer with one level of alias lookup applied."""
        data = self._load()
        return self._effective(data, data["active"])

    def dangling_aliases(self) -> Dict[str, str]:
        data = self._load()
        return {
            name: target
            for name, target in data["aliases"].items()
            if target not in data["installed"]
        }


__all__ = [
    "REGISTRY_FORMAT_VERSION",
    "InstalledVersion",
    "RemovalResult",
    "VersionRegistry",
]
