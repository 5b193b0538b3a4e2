"""
Per-runtime orchestration of runtimekit operations.

An Orchestrator wires the catalog, fetch client, installer, registry,
resolver, activator, migration importer and cleanup manager for one
runtime, and exposes one method per user-facing command:

    list_available  install  use  current  installed  remove
    alias  unalias  aliases  local  exec_plan  migrate  clean

Command-line front ends call execute() to get an Outcome carrying the exit
code instead of an exception.

Example:
    >>> orchestrator = Orchestrator("node")
    >>> orchestrator.install("lts")
    >>> orchestrator.use("lts")
    >>> plan = orchestrator.exec_plan(None, ["node", "--version"])
    >>> subprocess.run(plan.argv, env=plan.env)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import requests

from runtimekit.core.config import RuntimeKitConfig, load_config
from runtimekit.core.directory import DataLayout
from runtimekit.core.download import FetchClient
from runtimekit.core.exceptions import (
    ActivationFailed,
    ExitCode,
    RegistryError,
    ResolutionError,
    RuntimeKitError,
    VersionNotInstalled,
)
from runtimekit.core.filesystem import FilesystemError, atomic_write, safe_rmtree
from runtimekit.core.locking import LockManager, LockTimeout
from runtimekit.core.platform import PlatformInfo
from runtimekit.core.registry import InstalledVersion, RemovalResult, VersionRegistry
from runtimekit.runtimes import get_plugin
from runtimekit.versions.activation import ActivationResult, Activator
from runtimekit.versions.catalog import Catalog, CatalogListing
from runtimekit.versions.cleanup import CleanupManager, CleanupResult
from runtimekit.versions.installer import ArchiveInstaller, InstallResult
from runtimekit.versions.migration import MigrationImporter, MigrationReport
from runtimekit.versions.resolver import Resolution, Resolver
from runtimekit.versions.tokens import TokenKind, parse_token, validate_alias_name

logger = logging.getLogger(__name__)


# =============================================================================
# Result types
# =============================================================================


@dataclass
class Outcome:
    """
    Result of Orchestrator.execute().

    Attributes:
        status: 'success', 'partial' or 'failed'
        value: Return value of the operation (None on failure)
        error: Exception that caused the failure
        exit_code: Process exit code for a CLI front end
    """

    status: str
    value: Any = None
    error: Optional[BaseException] = None
    exit_code: ExitCode = ExitCode.SUCCESS

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass
class UseResult:
    """Outcome of switching the global version."""

    resolution: Resolution
    activation: ActivationResult
    pointer: str


@dataclass
class AliasInfo:
    name: str
    target: str
    dangling: bool


@dataclass
class ExecPlan:
    """
    Everything needed to spawn a command under the selected version.

    Attributes:
        argv: Command line (argv[0] made absolute when it is a runtime executable)
        env: Complete environment with the version's bin directory first on PATH
        version: Version the command runs under
        bin_dir: Bin directory prepended to PATH
    """

    argv: List[str]
    env: Dict[str, str]
    version: str
    bin_dir: Path


# =============================================================================
# Orchestrator
# =============================================================================


class Orchestrator:
    """Runs runtimekit operations for one runtime."""

    OPERATIONS = (
        "list_available",
        "install",
        "use",
        "current",
        "installed",
        "remove",
        "alias",
        "unalias",
        "aliases",
        "local",
        "exec_plan",
        "migrate",
        "clean",
    )

    def __init__(
        self,
        runtime: str,
        layout: Optional[DataLayout] = None,
        config: Optional[RuntimeKitConfig] = None,
        platform: Optional[PlatformInfo] = None,
        session: Optional[requests.Session] = None,
        cwd: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            runtime: 'node', 'rust', 'python' or 'go'
            layout: Data directory layout (default: $RUNTIMEKIT_HOME)
            config: Configuration (default: loaded from layout.config_file)
            platform: Target platform (detected if None)
            session: requests session used for all network access
            cwd: Working directory for pin lookup and `local` (default: process cwd)
            environ: Environment used for overrides and exec plans (default: os.environ)

        Raises:
            ValueError: If runtime is not supported
            ConfigError: If the configuration file is invalid
        """
        self.layout = (layout or DataLayout.default()).ensure()
        self.config = config or load_config(self.layout.config_file)
        self.plugin = get_plugin(runtime, platform, mirror=self.config.mirrors.get(runtime))
        self.cwd = Path(cwd) if cwd is not None else None
        self.environ = environ if environ is not None else os.environ

        self.lock_manager = LockManager(self.layout.lock_dir)
        self.registry = VersionRegistry(
            self.layout, self.plugin.name, self.lock_manager, self.config.locks.timeout
        )
        self.client = FetchClient(self.layout.catalogs_dir, self.config.network, session)
        self.catalog = Catalog(
            self.plugin, self.client, self.config.catalog.max_age_hours * 3600
        )
        self.installer = ArchiveInstaller(
            self.plugin,
            self.layout,
            self.registry,
            self.lock_manager,
            self.client,
            self.catalog,
            lock_timeout=self.config.locks.install_timeout,
        )
        self.activator = Activator(
            self.plugin, self.layout, self.config.activation.strategy, platform
        )

    @property
    def runtime(self) -> str:
        return self.plugin.name

    def resolver(self) -> Resolver:
        return Resolver(
            self.plugin,
            self.registry,
            self.catalog,
            order=self.config.resolution.order,
            ceiling=self.config.resolution.ceiling,
            cwd=self.cwd,
            environ=self.environ,
        )

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def execute(self, name: str, *args, **kwargs) -> Outcome:
        """
        Run an operation by name and map its result to an Outcome.

        Example:
            >>> outcome = orchestrator.execute("migrate", "nvm")
            >>> sys.exit(outcome.exit_code)
        """
        if name not in self.OPERATIONS:
            error = ValueError(f"Unknown operation '{name}'")
            return Outcome("failed", error=error, exit_code=ExitCode.ERROR)

        try:
            value = getattr(self, name)(*args, **kwargs)
        except RuntimeKitError as e:
            logger.error(str(e))
            return Outcome("failed", error=e, exit_code=e.exit_code)

        if isinstance(value, MigrationReport) and value.partial:
            return Outcome("partial", value=value, exit_code=ExitCode.MIGRATION_PARTIAL)
        return Outcome("success", value=value)

    # -------------------------------------------------------------------------
    # Catalog and install
    # -------------------------------------------------------------------------

    def list_available(self, channel: Optional[str] = None) -> CatalogListing:
        """List upstream releases, newest first (optionally one channel only)."""
        return self.catalog.list(channel)

    def install(self, token: str) -> InstallResult:
        """Install the release matching token ('20', '3.12.1', 'lts', 'latest')."""
        return self.installer.install_from_catalog(token)

    def installed(self) -> List[InstalledVersion]:
        """Installed versions, newest first."""
        records = self.registry.installed()

        def sort_key(record: InstalledVersion):
            try:
                return (1, self.plugin.parse_version(record.version).key)
            except ValueError:
                return (0, ())

        return sorted(records, key=sort_key, reverse=True)

    def remove(self, version: str) -> RemovalResult:
        """
        Uninstall a version.

        Clears the active pointer (and the activation link) if they select
        the removed version. Files of migrated in-place installs are left in
        the foreign tool's tree.

        Raises:
            VersionNotInstalled: If the version is not installed
            RegistryError: If the version is locked by an installer, or was
                unregistered but its files could not be deleted
        """
        try:
            normalized = str(self.plugin.parse_version(version))
        except ValueError as e:
            raise ResolutionError(f"'{version}' is not a {self.runtime} version") from e

        try:
            with self.lock_manager.install_lock(
                self.runtime, normalized, timeout=self.config.locks.install_timeout
            ):
                result = self.registry.remove_install(normalized)
                record = result.record

                target = self.activator.current_target()
                if result.cleared_active or (
                    target is not None and Path(target) == Path(record.path)
                ):
                    self.activator.deactivate()

                if not record.external and record.path.exists():
                    try:
                        safe_rmtree(
                            record.path, require_prefix=self.layout.store_dir(self.runtime)
                        )
                    except FilesystemError as e:
                        raise RegistryError(
                            f"Unregistered {self.runtime} {normalized} but could not delete "
                            f"{record.path}: {e}; run 'runtimekit clean' to remove it"
                        ) from e
        except LockTimeout as e:
            raise RegistryError(
                f"{self.runtime} {normalized} is being installed by another process"
            ) from e

        logger.info(f"Removed {self.plugin.display_name} {normalized}")
        return result

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def use(self, token: str) -> UseResult:
        """
        Make token the global default and switch the activation link.

        Alias names are stored as such, so the default follows the alias;
        anything else is stored as the resolved concrete version.

        Raises:
            VersionNotInstalled: If the selected version is not installed
            ActivationFailed: If the link swap or the pointer write fails
        """
        resolution = self.resolver().resolve(explicit=token)
        pointer = resolution.alias or resolution.version

        activation = None
        try:
            with self.registry.transaction() as doc:
                # Removed by another process since it was resolved
                if resolution.version not in doc["installed"]:
                    raise VersionNotInstalled(self.runtime, resolution.version, via=token)
                activation = self.activator.activate(resolution.record.path)
                doc["active"] = pointer
        except RegistryError as e:
            if activation is None:
                raise
            logger.error(f"Failed to record active {self.runtime}; reverting link")
            self.activator.restore(activation.previous_target)
            raise ActivationFailed(
                f"Activated {self.runtime} {resolution.version} but could not record it: {e}"
            ) from e

        logger.info(f"Now using {self.plugin.display_name} {resolution.version}")
        return UseResult(resolution=resolution, activation=activation, pointer=pointer)

    def current(self) -> Resolution:
        """Resolve the version in effect for the working directory."""
        return self.resolver().resolve()

    def alias(self, name: str, version: str) -> str:
        """
        Point an alias at an installed version.

        Returns:
            The concrete version the alias now targets
        """
        name = validate_alias_name(self.plugin, name)
        resolution = self.resolver().resolve(explicit=version)
        self.registry.set_alias(name, resolution.version)
        return resolution.version

    def unalias(self, name: str) -> str:
        """
        Delete an alias. A global default naming it is rewritten to its target.

        Returns:
            The version the alias pointed to
        """
        with self.registry.transaction() as doc:
            target = doc["aliases"].pop(name, None)
            if target is None:
                raise ResolutionError(f"No {self.runtime} alias named '{name}'")
            if doc["active"] == name:
                doc["active"] = target
        logger.info(f"Removed {self.runtime} alias '{name}'")
        return target

    def aliases(self) -> List[AliasInfo]:
        installed = {r.version for r in self.registry.installed()}
        return [
            AliasInfo(name=name, target=target, dangling=target not in installed)
            for name, target in sorted(self.registry.aliases().items())
        ]

    def local(self, token: str) -> Path:
        """
        Pin token for the working directory.

        Returns:
            Path of the written pin file
        """
        spec = parse_token(self.plugin, token)
        directory = self.cwd or Path.cwd()
        pin_path = directory / self.plugin.pin_files[0]
        atomic_write(pin_path, f"{spec.raw}\n")
        if spec.kind in (TokenKind.CONCRETE, TokenKind.PARTIAL):
            try:
                self.resolver().resolve(explicit=spec.raw)
            except VersionNotInstalled:
                logger.warning(f"{self.runtime} {spec.raw} is pinned but not installed")
        logger.info(f"Pinned {self.runtime} {spec.raw} in {pin_path}")
        return pin_path

    def exec_plan(self, token: Optional[str], argv: List[str]) -> ExecPlan:
        """
        Build the command line and environment to run argv under a version.

        Args:
            token: Version to use (None: normal precedence)
            argv: Command; an empty list runs the runtime's main executable

        Returns:
            ExecPlan (nothing is spawned)
        """
        resolution = self.resolver().resolve(explicit=token)
        install_path = resolution.record.path
        bin_dir = self.plugin.bin_dir(install_path)

        argv = list(argv) or [self.plugin.executables[0]]
        candidate = self.plugin.executable_path(install_path, argv[0])
        if os.sep not in argv[0] and candidate.is_file():
            argv[0] = str(candidate)

        env = dict(self.environ)
        path = env.get("PATH", "")
        env["PATH"] = f"{bin_dir}{os.pathsep}{path}" if path else str(bin_dir)
        env[self.plugin.env_var] = resolution.version

        return ExecPlan(argv=argv, env=env, version=resolution.version, bin_dir=bin_dir)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def migrate(self, tool: str) -> MigrationReport:
        """Import versions installed by nvm, n, rustup, pyenv or gvm."""
        importer = MigrationImporter(
            self.plugin,
            self.layout,
            self.registry,
            self.lock_manager,
            copy=self.config.migration.copy,
            environ=self.environ,
            lock_timeout=self.config.locks.install_timeout,
        )
        return importer.migrate(tool)

    def clean(self) -> CleanupResult:
        """Remove leftovers of interrupted operations."""
        manager = CleanupManager(
            self.layout, self.lock_manager, [self.plugin], [self.registry]
        )
        return manager.clean()


__all__ = [
    "Orchestrator",
    "Outcome",
    "UseResult",
    "AliasInfo",
    "ExecPlan",
]
