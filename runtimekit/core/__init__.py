"""
Core functionality for runtimekit.

This package contains the foundational modules that other components depend on.
"""

from .directory import (
    DataLayout,
    DirectoryError,
    get_data_dir,
)

from .locking import (
    LockManager,
    LockTimeout,
)

from .platform import (
    PlatformInfo,
    detect_platform,
)

from .registry import (
    InstalledVersion,
    VersionRegistry,
)

from .exceptions import (
    ExitCode,
    RuntimeKitError,
    ConfigError,
    RegistryError,
    RegistryLockTimeout,
    VersionNotFound,
    VersionNotInstalled,
    InstallFailed,
    ResolutionError,
    NoVersionSelected,
    ActivationFailed,
    NetworkUnavailable,
    FetchError,
    MigrationError,
    exit_code_for,
)

__all__ = [
    # Directory management
    "DataLayout",
    "DirectoryError",
    "get_data_dir",
    # Locking
    "LockManager",
    "LockTimeout",
    # Platform
    "PlatformInfo",
    "detect_platform",
    # Registry
    "InstalledVersion",
    "VersionRegistry",
    # Exceptions
    "ExitCode",
    "RuntimeKitError",
    "ConfigError",
    "RegistryError",
    "RegistryLockTimeout",
    "VersionNotFound",
    "VersionNotInstalled",
    "InstallFailed",
    "ResolutionError",
    "NoVersionSelected",
    "ActivationFailed",
    "NetworkUnavailable",
    "FetchError",
    "MigrationError",
    "exit_code_for",
]
