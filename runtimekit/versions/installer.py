"""
Archive install pipeline.

Installs one (runtime, version) pair from an archive so that a partially
installed version is never visible:

1. Take the per-pair install lock
2. Extract into a private staging directory under tmp/
3. Normalize the root directory and let the plugin adjust the layout
4. Validate the required executables
5. Publish with a single rename into versions/<runtime>/<version>
6. Register the install

Any failure removes the staging directory and leaves the store unchanged.
"""

import logging
import os
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from runtimekit.core.directory import DataLayout
from runtimekit.core.download import ChecksumError, DownloadProgress, FetchClient
from runtimekit.core.exceptions import FetchError, InstallFailed
from runtimekit.core.filesystem import (
    ArchiveExtractionError,
    FilesystemError,
    extract_archive,
    safe_rmtree,
)
from runtimekit.core.locking import LockManager, LockTimeout
from runtimekit.core.registry import InstalledVersion, VersionRegistry
from runtimekit.runtimes.base import RuntimePlugin
from runtimekit.versions.catalog import Catalog
from runtimekit.versions.tokens import VersionId, VersionSpec

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """
    Result of an install request.

    Attributes:
        record: Registered install
        already_installed: True if nothing had to be done
        recovered: True if an unregistered store directory was adopted
        duration: Seconds spent
    """

    record: InstalledVersion
    already_installed: bool = False
    recovered: bool = False
    duration: float = 0.0


class ArchiveInstaller:
    """
    Installs runtime versions into the store.

    Example:
        >>> installer = ArchiveInstaller(plugin, layout, registry, lock_manager, client, catalog)
        >>> result = installer.install_from_catalog("lts")
        >>> print(result.record.path)
    """

    def __init__(
        self,
        plugin: RuntimePlugin,
        layout: DataLayout,
        registry: VersionRegistry,
        lock_manager: LockManager,
        client: Optional[FetchClient] = None,
        catalog: Optional[Catalog] = None,
        lock_timeout: float = 600,
    ):
        """
        Initialize installer.

        Args:
            plugin: Runtime plugin
            layout: Data directory layout
            registry: Registry of the plugin's runtime
            lock_manager: Lock manager for install locks
            client: Fetch client (needed by install_from_catalog)
            catalog: Release catalog (needed by install_from_catalog)
            lock_timeout: Seconds to wait for a concurrent install of the same version
        """
        self.plugin = plugin
        self.layout = layout
        self.registry = registry
        self.lock_manager = lock_manager
        self.client = client
        self.catalog = catalog
        self.lock_timeout = lock_timeout

    @property
    def runtime(self) -> str:
        return self.plugin.name

    @contextmanager
    def _install_lock(self, version: str) -> Iterator[None]:
        try:
            with self.lock_manager.install_lock(
                self.runtime, version, timeout=self.lock_timeout
            ):
                yield
        except LockTimeout as e:
            raise InstallFailed(
                self.runtime,
                version,
                "another process is installing this version",
                self.lock_manager.install_lock_path(self.runtime, version),
            ) from e

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def install(
        self,
        version: VersionId,
        archive: Union[Path, bytes],
        archive_name: Optional[str] = None,
    ) -> InstallResult:
        """
        Install version from an archive file or in-memory archive bytes.

        Args:
            version: Version being installed
            archive: Archive path, or raw archive bytes
            archive_name: File name used to detect the format of raw bytes
                (defaults to the plugin's archive name for this platform)

        Returns:
            InstallResult

        Raises:
            InstallFailed: If extraction or validation fails
        """
        start = time.time()
        with self._install_lock(str(version)):
            result = self._install_locked(version, archive, archive_name)
        result.duration = time.time() - start
        return result

    def install_from_catalog(
        self,
        token: Union[str, VersionSpec],
        progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    ) -> InstallResult:
        """
        Resolve token through the catalog, download and install it.

        Args:
            token: Concrete, partial or symbolic version token
            progress_callback: Optional download progress callback

        Returns:
            InstallResult

        Raises:
            VersionNotFound: If no release matches token
            InstallFailed: If download verification or install fails
            NetworkUnavailable: If the network is unreachable
        """
        if self.catalog is None or self.client is None:
            raise ValueError("install_from_catalog requires a catalog and a fetch client")

        start = time.time()
        entry = self.catalog.find(token)
        version = entry.version
        v = str(version)

        with self._install_lock(v):
            existing = self.registry.get(v)
            if existing is not None:
                logger.info(f"{self.plugin.display_name} {v} is already installed")
                return InstallResult(
                    existing, already_installed=True, duration=time.time() - start
                )

            try:
                url = self.plugin.archive_url(version)
                archive_name = self.plugin.archive_name(version)
            except ValueError as e:
                raise InstallFailed(self.runtime, v, str(e)) from e

            checksum = self.plugin.checksum_for(entry, self.client)
            if checksum is None:
                logger.warning(
                    f"No published checksum for {archive_name}; "
                    "installing without verification"
                )

            destination = self.layout.downloads_dir / archive_name
            try:
                archive_path = self.client.download(
                    url, destination, checksum, progress_callback
                )
            except ChecksumError as e:
                logger.error(f"Checksum verification failed for {archive_name}")
                raise InstallFailed(self.runtime, v, str(e), destination) from e
            except FetchError as e:
                raise InstallFailed(self.runtime, v, str(e), destination) from e

            result = self._install_locked(version, archive_path, archive_name)

        result.duration = time.time() - start
        return result

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def _install_locked(
        self,
        version: VersionId,
        archive: Union[Path, bytes],
        archive_name: Optional[str],
    ) -> InstallResult:
        """Install with the pair's install lock already held."""
        v = str(version)

        existing = self.registry.get(v)
        if existing is not None:
            logger.info(f"{self.plugin.display_name} {v} is already installed")
            return InstallResult(existing, already_installed=True)

        install_dir = self.layout.install_dir(self.runtime, v)
        if install_dir.exists() or install_dir.is_symlink():
            recovered = self._recover_unregistered(v, install_dir)
            if recovered is not None:
                return InstallResult(recovered, recovered=True)

        self.layout.tmp_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(
            tempfile.mkdtemp(prefix=f"stage-{self.runtime}-{v}-", dir=self.layout.tmp_dir)
        )
        logger.info(f"Installing {self.plugin.display_name} {v}")

        try:
            if isinstance(archive, (bytes, bytearray)):
                name = archive_name or self.plugin.archive_name(version)
                archive_path = staging / name
                archive_path.write_bytes(archive)
            else:
                archive_path = Path(archive)

            extract_dir = staging / "extract"
            extract_archive(archive_path, extract_dir)

            root = self._normalize_root_directory(extract_dir)
            self.plugin.prepare_layout(root)

            missing = self.plugin.missing_executables(root)
            if missing:
                raise InstallFailed(
                    self.runtime,
                    v,
                    f"archive lacks required executables: {', '.join(missing)}",
                    archive_path,
                )

            install_dir.parent.mkdir(parents=True, exist_ok=True)
            os.rename(root, install_dir)
            logger.debug(f"Published {root} -> {install_dir}")

        except InstallFailed as e:
            logger.error(str(e))
            raise
        except (ArchiveExtractionError, FilesystemError, OSError, ValueError) as e:
            logger.error(f"Install of {self.runtime} {v} failed: {e}")
            raise InstallFailed(self.runtime, v, str(e), install_dir) from e
        finally:
            if staging.exists():
                safe_rmtree(staging, require_prefix=self.layout.tmp_dir)

        record = self.registry.add_install(v, install_dir, source="download")
        logger.info(f"Installed {self.plugin.display_name} {v} at {install_dir}")
        return InstallResult(record)

    def _recover_unregistered(self, version: str, install_dir: Path) -> Optional[InstalledVersion]:
        """
        Adopt a published but unregistered store directory, or remove it.

        Happens when a process died between publish and register.
        """
        missing = self.plugin.missing_executables(install_dir)
        if not missing:
            logger.info(f"Registering previously published {self.runtime} {version}")
            return self.registry.add_install(version, install_dir, source="download")

        logger.warning(
            f"Removing invalid unregistered {self.runtime} {version} at {install_dir} "
            f"(missing {', '.join(missing)})"
        )
        try:
            if install_dir.is_symlink() or install_dir.is_file():
                install_dir.unlink()
            else:
                safe_rmtree(install_dir, require_prefix=self.layout.store_dir(self.runtime))
        except (FilesystemError, OSError) as e:
            raise InstallFailed(self.runtime, version, str(e), install_dir) from e
        return None

    def _normalize_root_directory(self, extract_dir: Path) -> Path:
        """
        Normalize extracted directory structure.

        Some archives have a single root folder, others extract directly.
        This function returns the actual install root directory.
        """
        items = list(extract_dir.iterdir())

        if len(items) == 1 and items[0].is_dir() and not items[0].is_symlink():
            return items[0]

        return extract_dir


__all__ = ["ArchiveInstaller", "InstallResult"]
