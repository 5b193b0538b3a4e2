"""
Directory structure management for runtimekit.

This module resolves the per-user data directory and the fixed layout
below it. Every component receives a DataLayout instead of computing
paths on its own, so tests can point the whole tool at a temporary tree.

Directory Structure ($RUNTIMEKIT_HOME, default ~/.runtimekit):
    - registry/<runtime>.json : Installed versions, aliases, active pointer
    - versions/<runtime>/<v>/ : Immutable install store
    - current/<runtime>       : Activation link consulted by PATH
    - cache/catalogs/         : Last successfully fetched release catalogs
    - cache/downloads/        : Verified archives
    - tmp/                    : Staging directories (safe to delete)
    - lock/                   : Advisory lock files
    - config.yaml             : Optional user configuration
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from runtimekit.core.exceptions import RuntimeKitError

HOME_ENV_VAR = "RUNTIMEKIT_HOME"


class DirectoryError(RuntimeKitError):
    """Raised when the data directory cannot be determined or created."""

    pass


def get_data_dir() -> Path:
    """
    Get the per-user data directory.

    Returns:
        Path from $RUNTIMEKIT_HOME, or ~/.runtimekit (%USERPROFILE%\\.runtimekit
        on Windows)

    Example:
        >>> get_data_dir()
        PosixPath('/home/user/.runtimekit')
    """
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()

    if os.name == "nt":
        user_profile = os.environ.get("USERPROFILE")
        if not user_profile:
            raise DirectoryError(
                "USERPROFILE environment variable is not set. "
                "Cannot determine data directory."
            )
        return Path(user_profile) / ".runtimekit"

    return Path.home() / ".runtimekit"


@dataclass(frozen=True)
class DataLayout:
    """Fixed paths below the data directory."""

    root: Path

    @classmethod
    def default(cls, root: Optional[Path] = None) -> "DataLayout":
        return cls(Path(root) if root is not None else get_data_dir())

    @property
    def registry_dir(self) -> Path:
        return self.root / "registry"

    @property
    def versions_dir(self) -> Path:
        return self.root / "versions"

    @property
    def current_dir(self) -> Path:
        return self.root / "current"

    @property
    def cache_dir(self) -> Path:
        return self.root / "cache"

    @property
    def catalogs_dir(self) -> Path:
        return self.cache_dir / "catalogs"

    @property
    def downloads_dir(self) -> Path:
        return self.cache_dir / "downloads"

    @property
    def tmp_dir(self) -> Path:
        return self.root / "tmp"

    @property
    def lock_dir(self) -> Path:
        return self.root / "lock"

    @property
    def config_file(self) -> Path:
        return self.root / "config.yaml"

    def registry_file(self, runtime: str) -> Path:
        return self.registry_dir / f"{runtime}.json"

    def store_dir(self, runtime: str) -> Path:
        return self.versions_dir / runtime

    def install_dir(self, runtime: str, version: str) -> Path:
        return self.store_dir(runtime) / version

    def current_link(self, runtime: str) -> Path:
        return self.current_dir / runtime

    def ensure(self) -> "DataLayout":
        """
        Create the directory structure if it doesn't exist.

        Returns:
            self, for chaining

        Raises:
            DirectoryError: If a directory cannot be created
        """
        for path in (
            self.root,
            self.registry_dir,
            self.versions_dir,
            self.current_dir,
            self.catalogs_dir,
            self.downloads_dir,
            self.tmp_dir,
            self.lock_dir,
        ):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DirectoryError(f"Failed to create directory {path}: {e}") from e
        return self


__all__ = ["HOME_ENV_VAR", "DirectoryError", "DataLayout", "get_data_dir"]
