"""
Node.js runtime plugin.

Releases come from the official distribution index
(``https://nodejs.org/dist/index.json``); checksums from the per-release
``SHASUMS256.txt``.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from runtimekit.core.download import FetchClient
from runtimekit.core.exceptions import FetchError, NetworkUnavailable
from runtimekit.runtimes.base import CatalogEntry, RuntimePlugin, parse_checksum_file
from runtimekit.versions.tokens import VersionId

logger = logging.getLogger(__name__)

_OS_NAMES = {"linux": "linux", "macos": "darwin", "windows": "win"}
_ARCH_NAMES = {"x64": "x64", "arm64": "arm64", "x86": "x86", "arm": "armv7l"}


class NodePlugin(RuntimePlugin):
    """Node.js from nodejs.org binary distributions."""

    name = "node"
    display_name = "Node.js"
    channel = "lts"
    pin_files = (".node-version", ".nvmrc")
    version_prefixes = ("v",)
    executables = ("node",)
    default_base_url = "https://nodejs.org/dist"

    def normalize_token(self, token: str) -> str:
        """Accept nvm spellings: 'lts/*', 'lts/<codename>', 'node'."""
        lowered = token.lower()
        if lowered in ("node", "current"):
            return "latest"
        if lowered == "lts/*":
            return "lts"
        if lowered.startswith("lts/"):
            return lowered
        return token

    def is_symbolic(self, token: str) -> bool:
        lowered = token.lower()
        return lowered in self.symbolic_tokens() or lowered.startswith("lts/")

    def platform_suffix(self) -> str:
        os_name = _OS_NAMES.get(self.platform.os, self.platform.os)
        arch = _ARCH_NAMES.get(self.platform.arch, self.platform.arch)
        return f"{os_name}-{arch}"

    def catalog_url(self) -> str:
        return f"{self.base_url}/index.json"

    def parse_catalog(self, data: bytes) -> List[CatalogEntry]:
        releases = json.loads(data)
        if not isinstance(releases, list):
            raise ValueError("expected a JSON list of releases")

        entries = []
        for release in releases:
            try:
                version = self.parse_version(release["version"])
            except ValueError:
                logger.debug(f"Skipping unparseable node release {release.get('version')!r}")
                continue

            channels = set()
            lts = release.get("lts")
            if lts:
                channels.add("lts")
                if isinstance(lts, str):
                    channels.add(f"lts/{lts.lower()}")

            entries.append(
                CatalogEntry(
                    version=version,
                    channels=frozenset(channels),
                    date=release.get("date"),
                    files=tuple(release.get("files", ())),
                )
            )
        return entries

    def archive_url(self, version: VersionId) -> str:
        return (
            f"{self.base_url}/v{version}/"
            f"node-v{version}-{self.platform_suffix()}{self.platform.archive_extension}"
        )

    def checksum_for(self, entry: CatalogEntry, client: FetchClient) -> Optional[str]:
        """Look the archive up in the release's SHASUMS256.txt."""
        url = f"{self.base_url}/v{entry.version}/SHASUMS256.txt"
        try:
            text = client.fetch(url).decode("utf-8", errors="replace")
        except (FetchError, NetworkUnavailable) as e:
            logger.warning(f"No checksum list for node {entry.version}: {e}")
            return None
        return parse_checksum_file(text, self.archive_name(entry.version))

    def bin_dir(self, install_path: Path) -> Path:
        # Windows zips keep node.exe at the top level
        if self.platform.is_windows:
            return Path(install_path)
        return Path(install_path) / "bin"


__all__ = ["NodePlugin"]
