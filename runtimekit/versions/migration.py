"""
Import of versions installed by other version managers.

Known sources:
    nvm    -> node   ($NVM_DIR, default ~/.nvm)           versions/node/v18.17.0
    n      -> node   ($N_PREFIX, default /usr/local)      n/versions/node/18.17.0
    rustup -> rust   ($RUSTUP_HOME, default ~/.rustup)    toolchains/1.75.0-<target>
    pyenv  -> python ($PYENV_ROOT, default ~/.pyenv)      versions/3.12.1
    gvm    -> go     ($GVM_ROOT, default ~/.gvm)          gos/go1.21.5

By default imported versions are registered in place and the foreign tree
is never modified. With ``migration.copy`` they are copied into the store.
Migration is idempotent: versions already registered are reported as
already present.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from runtimekit.core.directory import DataLayout
from runtimekit.core.exceptions import MigrationError
from runtimekit.core.filesystem import FilesystemError, recursive_copy, safe_rmtree
from runtimekit.core.locking import LockManager, LockTimeout
from runtimekit.core.registry import VersionRegistry
from runtimekit.runtimes.base import RuntimePlugin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationSource:
    """
    Where a foreign tool keeps its installs and how it names them.

    Attributes:
        tool: Tool name
        runtime: Runtime the tool manages
        env_var: Environment variable overriding the tool's root
        default_root: Root used when env_var is unset (receives the home dir)
        versions_subdir: Path of the versions directory below the root
        pattern: Regex over directory names; group 1 is the version
        skip_patterns: (regex, reason) pairs for names skipped on purpose
    """

    tool: str
    runtime: str
    env_var: str
    default_root: Callable[[Path], Path]
    versions_subdir: Tuple[str, ...]
    pattern: "re.Pattern[str]"
    skip_patterns: Tuple[Tuple["re.Pattern[str]", str], ...] = ()


MIGRATION_SOURCES: Dict[str, MigrationSource] = {
    "nvm": MigrationSource(
        tool="nvm",
        runtime="node",
        env_var="NVM_DIR",
        default_root=lambda home: home / ".nvm",
        versions_subdir=("versions", "node"),
        pattern=re.compile(r"^v(\d+\.\d+\.\d+)$"),
    ),
    "n": MigrationSource(
        tool="n",
        runtime="node",
        env_var="N_PREFIX",
        default_root=lambda home: Path("/usr/local"),
        versions_subdir=("n", "versions", "node"),
        pattern=re.compile(r"^(\d+\.\d+\.\d+)$"),
    ),
    "rustup": MigrationSource(
        tool="rustup",
        runtime="rust",
        env_var="RUSTUP_HOME",
        default_root=lambda home: home / ".rustup",
        versions_subdir=("toolchains",),
        pattern=re.compile(r"^(\d+\.\d+\.\d+)-[a-z0-9_]+(?:-[a-z0-9_]+)+$"),
        skip_patterns=(
            (
                re.compile(r"^(stable|beta|nightly)(-|$)"),
                "channel toolchain has no fixed version",
            ),
        ),
    ),
    "pyenv": MigrationSource(
        tool="pyenv",
        runtime="python",
        env_var="PYENV_ROOT",
        default_root=lambda home: home / ".pyenv",
        versions_subdir=("versions",),
        pattern=re.compile(r"^(\d+\.\d+\.\d+(?:(?:a|b|rc)\d+)?)$"),
    ),
    "gvm": MigrationSource(
        tool="gvm",
        runtime="go",
        env_var="GVM_ROOT",
        default_root=lambda home: home / ".gvm",
        versions_subdir=("gos",),
        pattern=re.compile(r"^go(\d+\.\d+(?:\.\d+)?(?:(?:rc|beta)\d+)?)$"),
    ),
}


def tools_for_runtime(runtime: str) -> List[str]:
    """Names of migration sources that manage runtime."""
    return sorted(s.tool for s in MIGRATION_SOURCES.values() if s.runtime == runtime)


@dataclass
class MigrationReport:
    """
    Outcome of one migration run.

    Attributes:
        tool: Foreign tool name
        runtime: Runtime imported into
        imported: Versions newly registered
        already_present: Versions that were registered before
        skipped: (path, reason) for every entry that was not imported
    """

    tool: str
    runtime: str
    imported: List[str] = field(default_factory=list)
    already_present: List[str] = field(default_factory=list)
    skipped: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.skipped)


class MigrationImporter:
    """
    Imports foreign installs of one runtime into the registry.

    Example:
        >>> importer = MigrationImporter(plugin, layout, registry, lock_manager)
        >>> report = importer.migrate("nvm")
        >>> print(f"Imported {len(report.imported)}, skipped {len(report.skipped)}")
    """

    def __init__(
        self,
        plugin: RuntimePlugin,
        layout: DataLayout,
        registry: VersionRegistry,
        lock_manager: LockManager,
        copy: bool = False,
        environ: Optional[Mapping[str, str]] = None,
        home: Optional[Path] = None,
        lock_timeout: float = 600,
    ):
        self.plugin = plugin
        self.layout = layout
        self.registry = registry
        self.lock_manager = lock_manager
        self.copy = copy
        self.environ = environ if environ is not None else os.environ
        self.home = Path(home) if home is not None else Path.home()
        self.lock_timeout = lock_timeout

    def source_root(self, source: MigrationSource) -> Path:
        override = self.environ.get(source.env_var)
        if override:
            return Path(override).expanduser()
        return source.default_root(self.home)

    def versions_dir(self, source: MigrationSource) -> Path:
        return self.source_root(source).joinpath(*source.versions_subdir)

    def migrate(self, tool: str) -> MigrationReport:
        """
        Import every valid version found in tool's tree.

        Args:
            tool: 'nvm', 'n', 'rustup', 'pyenv' or 'gvm'

        Returns:
            MigrationReport (report.partial is True if anything was skipped)

        Raises:
            MigrationError: If the tool is unknown, manages another runtime,
                or its versions directory does not exist
        """
        source = MIGRATION_SOURCES.get(tool)
        if source is None:
            raise MigrationError(
                f"Unknown migration source '{tool}'. "
                f"Supported: {', '.join(sorted(MIGRATION_SOURCES))}"
            )
        if source.runtime != self.plugin.name:
            raise MigrationError(
                f"{tool} manages {source.runtime}, not {self.plugin.name}"
            )

        versions_dir = self.versions_dir(source)
        if not versions_dir.is_dir():
            raise MigrationError(
                f"No {tool} installation found: {versions_dir} does not exist "
                f"(set {source.env_var} if {tool} lives elsewhere)"
            )

        logger.info(f"Migrating {self.plugin.display_name} versions from {tool} ({versions_dir})")
        report = MigrationReport(tool=tool, runtime=self.plugin.name)

        for entry in sorted(versions_dir.iterdir()):
            if not entry.is_dir():
                logger.debug(f"Ignoring non-directory {entry}")
                continue
            self._import_entry(source, entry, report)

        for path, reason in report.skipped:
            logger.warning(f"Skipped {path}: {reason}")
        logger.info(
            f"{tool}: imported {len(report.imported)}, already present "
            f"{len(report.already_present)}, skipped {len(report.skipped)}"
        )
        return report

    def _import_entry(
        self, source: MigrationSource, entry: Path, report: MigrationReport
    ) -> None:
        for skip_pattern, reason in source.skip_patterns:
            if skip_pattern.match(entry.name):
                report.skipped.append((entry, reason))
                return

        match = source.pattern.match(entry.name)
        if not match:
            report.skipped.append((entry, "unrecognized version directory name"))
            return

        try:
            version = str(self.plugin.parse_version(match.group(1)))
        except ValueError as e:
            report.skipped.append((entry, str(e)))
            return

        if self.registry.is_installed(version):
            report.already_present.append(version)
            return

        missing = self.plugin.missing_executables(entry)
        if missing:
            report.skipped.append((entry, f"missing executables: {', '.join(missing)}"))
            return

        tag = f"migrated:{source.tool}"
        try:
            if self.copy:
                self._copy_into_store(version, entry, tag, report)
            else:
                self.registry.add_install(version, entry, source=tag, external=True)
                report.imported.append(version)
        except (FilesystemError, OSError, LockTimeout) as e:
            report.skipped.append((entry, f"import failed: {e}"))

    def _copy_into_store(
        self, version: str, entry: Path, tag: str, report: MigrationReport
    ) -> None:
        """Copy entry into the store through staging and rename."""
        runtime = self.plugin.name
        install_dir = self.layout.install_dir(runtime, version)

        with self.lock_manager.install_lock(runtime, version, timeout=self.lock_timeout):
            if self.registry.is_installed(version):
                report.already_present.append(version)
                return
            if install_dir.exists():
                if self.plugin.missing_executables(install_dir):
                    report.skipped.append(
                        (entry, f"unregistered store directory {install_dir} is invalid")
                    )
                    return
            else:
                self.layout.tmp_dir.mkdir(parents=True, exist_ok=True)
                staging = Path(
                    tempfile.mkdtemp(prefix=f"stage-{runtime}-{version}-", dir=self.layout.tmp_dir)
                )
                try:
                    staged_root = staging / "root"
                    recursive_copy(entry, staged_root)
                    install_dir.parent.mkdir(parents=True, exist_ok=True)
                    os.rename(staged_root, install_dir)
                finally:
                    safe_rmtree(staging, require_prefix=self.layout.tmp_dir)

            self.registry.add_install(version, install_dir, source=tag, external=False)
            report.imported.append(version)


__all__ = [
    "MIGRATION_SOURCES",
    "MigrationSource",
    "MigrationReport",
    "MigrationImporter",
    "tools_for_runtime",
]
