"""
Centralized exception hierarchy for runtimekit.

Every error raised across a component boundary derives from RuntimeKitError
and carries the process exit code an external CLI should use for it.
"""

from enum import IntEnum
from pathlib import Path
from typing import Optional


class ExitCode(IntEnum):
    """Exit-code contract exposed to command-line front ends."""

    SUCCESS = 0
    ERROR = 1
    NOT_FOUND = 2
    NOT_INSTALLED = 3
    INSTALL_FAILED = 4
    RESOLUTION_ERROR = 5
    MIGRATION_PARTIAL = 6
    ACTIVATION_FAILED = 7
    NETWORK_UNAVAILABLE = 8


# ============================================================================
# Base Exceptions
# ============================================================================


class RuntimeKitError(Exception):
    """Base exception for all runtimekit errors."""

    exit_code = ExitCode.ERROR


class ConfigError(RuntimeKitError):
    """Configuration file could not be parsed or holds invalid values."""

    pass


# ============================================================================
# Registry Exceptions
# ============================================================================


class RegistryError(RuntimeKitError):
    """Base exception for registry-related errors."""

    pass


class RegistryLockTimeout(RegistryError):
    """Raised when registry lock cannot be acquired within timeout."""

    pass


# ============================================================================
# Version Exceptions
# ============================================================================


class VersionNotFound(RuntimeKitError):
    """No catalog entry matches the requested token."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, runtime: str, token: str, detail: str = ""):
        self.runtime = runtime
        self.token = token
        msg = f"No {runtime} release matches '{token}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class VersionNotInstalled(RuntimeKitError):
    """A version was selected but is absent from the local registry."""

    exit_code = ExitCode.NOT_INSTALLED

    def __init__(self, runtime: str, version: str, via: str = ""):
        self.runtime = runtime
        self.version = version
        self.via = via
        msg = f"{runtime} {version} is not installed"
        if via:
            msg += f" (selected by {via})"
        super().__init__(msg)


class InstallFailed(RuntimeKitError):
    """Download, verification or extraction failed; the store is unchanged."""

    exit_code = ExitCode.INSTALL_FAILED

    def __init__(
        self, runtime: str, version: str, reason: str, path: Optional[Path] = None
    ):
        self.runtime = runtime
        self.version = version
        self.reason = reason
        self.path = path
        msg = f"Failed to install {runtime} {version}: {reason}"
        if path is not None:
            msg += f" [{path}]"
        super().__init__(msg)


class ResolutionError(RuntimeKitError):
    """Cyclic or malformed selection (alias chain, bad pin file, bad token)."""

    exit_code = ExitCode.RESOLUTION_ERROR


class NoVersionSelected(ResolutionError):
    """None of the precedence sources produced a version."""

    def __init__(self, runtime: str):
        self.runtime = runtime
        super().__init__(
            f"No {runtime} version selected: no override, environment variable, "
            f"project pin or default is set"
        )


class ActivationFailed(RuntimeKitError):
    """The current-version pointer could not be swapped."""

    exit_code = ExitCode.ACTIVATION_FAILED


# ============================================================================
# Network Exceptions
# ============================================================================


class NetworkUnavailable(RuntimeKitError):
    """Network is unreachable and no cached copy can stand in."""

    exit_code = ExitCode.NETWORK_UNAVAILABLE


class FetchError(RuntimeKitError):
    """Remote server answered with a non-retryable error."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(f"Failed to fetch {url}: {reason}")


# ============================================================================
# Migration Exceptions
# ============================================================================


class MigrationError(RuntimeKitError):
    """Migration source is unknown or its root does not exist."""

    pass


def exit_code_for(error: BaseException) -> ExitCode:
    """
    Map an exception to the exit code a CLI front end should return.

    Args:
        error: Exception raised by a core operation

    Returns:
        ExitCode for the error (ERROR for anything outside the hierarchy)
    """
    if isinstance(error, RuntimeKitError):
        return error.exit_code
    return ExitCode.ERROR


__all__ = [
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
