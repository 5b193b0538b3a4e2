"""
Base runtime plugin abstraction for runtimekit.

Every runtime-specific difference (release catalog format, archive naming,
version syntax, on-disk layout of an install) lives in a RuntimePlugin
subclass. Core components only talk to this interface and never branch on a
runtime's name.

Classes:
    CatalogEntry: One published release
    RuntimePlugin: Abstract base class for runtime implementations
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple
from urllib.parse import urlparse

from runtimekit.core.download import CatalogPayload, FetchClient
from runtimekit.core.exceptions import FetchError
from runtimekit.core.platform import PlatformInfo, detect_platform
from runtimekit.versions.tokens import VersionId

logger = logging.getLogger(__name__)


# =============================================================================
# Catalog data
# =============================================================================


@dataclass(frozen=True)
class CatalogEntry:
    """
    One release advertised by an upstream catalog.

    Attributes:
        version: Parsed release number
        channels: Channel flags (e.g. {'lts', 'lts/iron'} or {'stable'})
        date: Release date as published (may be None)
        files: Upstream file or platform identifiers
        checksums: SHA256 by archive file name, when the catalog carries them
    """

    version: VersionId
    channels: FrozenSet[str] = frozenset()
    date: Optional[str] = None
    files: Tuple[str, ...] = ()
    checksums: Dict[str, str] = field(default_factory=dict, compare=False)


def parse_checksum_file(text: str, file_name: str) -> Optional[str]:
    """
    Find the hash of one file in a SHASUMS-style listing.

    Lines look like '<sha256>  <name>' (a '*' before the name marks binary
    mode and is ignored).

    Returns:
        Lower-case hex digest, or None if the file is not listed
    """
    for line in text.splitlines():
        parts = line.strip().split()
        if len(parts) == 2 and parts[1].lstrip("*") == file_name:
            return parts[0].lower()
    return None


# =============================================================================
# Abstract runtime plugin
# =============================================================================


class RuntimePlugin(ABC):
    """
    Abstract base class for runtime implementations.

    Class attributes describe the runtime; methods translate between
    upstream conventions and runtimekit's generic install pipeline.

    Attributes:
        name: Runtime identifier ('node', 'rust', 'python', 'go')
        display_name: Human-readable name
        channel: Symbolic channel token besides 'latest' ('lts' or 'stable')
        pin_files: Project pin file names, in lookup order
        version_prefixes: Prefixes stripped from version strings
        executables: Executable names required in a valid install
        default_base_url: Download base URL (overridden by a mirror)
    """

    name: str = ""
    display_name: str = ""
    channel: str = "stable"
    pin_files: Tuple[str, ...] = ()
    version_prefixes: Tuple[str, ...] = ()
    executables: Tuple[str, ...] = ()
    default_base_url: str = ""

    def __init__(self, platform: Optional[PlatformInfo] = None, mirror: Optional[str] = None):
        """
        Initialize plugin.

        Args:
            platform: Target platform (detected if None)
            mirror: Download base URL replacing default_base_url
        """
        self.platform = platform or detect_platform()
        self.base_url = (mirror or self.default_base_url).rstrip("/")

    @property
    def env_var(self) -> str:
        """Environment variable that overrides the selected version."""
        return f"RUNTIMEKIT_{self.name.upper()}_VERSION"

    # -------------------------------------------------------------------------
    # Version syntax
    # -------------------------------------------------------------------------

    def normalize_token(self, token: str) -> str:
        """Map foreign spellings of a token onto runtimekit's (default: unchanged)."""
        return token

    def symbolic_tokens(self) -> Tuple[str, ...]:
        return ("latest", self.channel)

    def is_symbolic(self, token: str) -> bool:
        return token.lower() in self.symbolic_tokens()

    def parse_version(self, text: str) -> VersionId:
        """
        Parse a version string of this runtime.

        Raises:
            ValueError: If text is not a version number
        """
        return VersionId.parse(self.name, text, self.version_prefixes)

    def compare_versions(self, a: VersionId, b: VersionId) -> int:
        """Return -1, 0 or 1 as a is older, equal or newer than b."""
        if a < b:
            return -1
        if a > b:
            return 1
        return 0

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    @abstractmethod
    def catalog_url(self) -> str:
        """URL of the upstream release listing."""
        pass

    @abstractmethod
    def parse_catalog(self, data: bytes) -> List[CatalogEntry]:
        """
        Turn the raw upstream listing into catalog entries.

        Raises:
            ValueError: If the listing cannot be parsed
        """
        pass

    def fetch_catalog(
        self, client: FetchClient, max_age_seconds: float = 0
    ) -> Tuple[List[CatalogEntry], CatalogPayload]:
        """
        Fetch and parse the release catalog.

        Args:
            client: Fetch client (handles retry and the offline cache)
            max_age_seconds: Serve a cached catalog younger than this

        Returns:
            Tuple of (entries, payload) so callers can inspect staleness

        Raises:
            FetchError: If the listing is malformed
            NetworkUnavailable: If offline without a cached catalog
        """
        url = self.catalog_url()
        payload = client.fetch_catalog(self.name, url, max_age_seconds)
        try:
            entries = self.parse_catalog(payload.data)
        except (ValueError, KeyError, TypeError) as e:
            raise FetchError(url, f"malformed {self.name} catalog: {e}") from e
        logger.debug(f"Parsed {len(entries)} {self.name} releases from {url}")
        return entries, payload

    # -------------------------------------------------------------------------
    # Archives
    # -------------------------------------------------------------------------

    @abstractmethod
    def archive_url(self, version: VersionId) -> str:
        """Download URL of the archive for version on this platform."""
        pass

    def archive_name(self, version: VersionId) -> str:
        return Path(urlparse(self.archive_url(version)).path).name

    def checksum_for(self, entry: CatalogEntry, client: FetchClient) -> Optional[str]:
        """
        Published SHA256 of the platform archive, if upstream provides one.

        The default reads checksums embedded in the catalog entry.
        """
        return entry.checksums.get(self.archive_name(entry.version))

    # -------------------------------------------------------------------------
    # Install layout
    # -------------------------------------------------------------------------

    def prepare_layout(self, root: Path) -> None:
        """Rearrange an extracted archive in staging (default: nothing to do)."""
        pass

    def bin_dir(self, install_path: Path) -> Path:
        """Directory holding the runtime's executables."""
        return Path(install_path) / "bin"

    def executable_path(self, install_path: Path, name: str) -> Path:
        return self.bin_dir(install_path) / f"{name}{self.platform.exe_suffix}"

    def missing_executables(self, install_path: Path) -> List[str]:
        """Names of required executables absent from install_path."""
        return [
            name
            for name in self.executables
            if not self.executable_path(install_path, name).is_file()
        ]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(platform={self.platform}, base_url={self.base_url!r})"


__all__ = ["CatalogEntry", "RuntimePlugin", "parse_checksum_file"]
