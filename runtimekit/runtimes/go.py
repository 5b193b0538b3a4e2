"""
Go runtime plugin.

The JSON release feed (``https://go.dev/dl/?mode=json&include=all``) lists
every release with per-file SHA256 checksums.
"""

import json
import logging
from typing import List

from runtimekit.runtimes.base import CatalogEntry, RuntimePlugin
from runtimekit.versions.tokens import VersionId

logger = logging.getLogger(__name__)

_OS_NAMES = {"linux": "linux", "macos": "darwin", "windows": "windows"}
_ARCH_NAMES = {"x64": "amd64", "arm64": "arm64", "x86": "386", "arm": "armv6l"}


class GoPlugin(RuntimePlugin):
    """Go binary distributions from go.dev."""

    name = "go"
    display_name = "Go"
    channel = "stable"
    pin_files = (".go-version",)
    version_prefixes = ("go",)
    executables = ("go", "gofmt")
    default_base_url = "https://go.dev/dl"

    def platform_suffix(self) -> str:
        os_name = _OS_NAMES.get(self.platform.os, self.platform.os)
        arch = _ARCH_NAMES.get(self.platform.arch, self.platform.arch)
        return f"{os_name}-{arch}"

    def catalog_url(self) -> str:
        return f"{self.base_url}/?mode=json&include=all"

    def parse_catalog(self, data: bytes) -> List[CatalogEntry]:
        releases = json.loads(data)
        if not isinstance(releases, list):
            raise ValueError("expected a JSON list of releases")

        entries = []
        for release in releases:
            try:
                version = self.parse_version(release["version"])
            except ValueError:
                logger.debug(f"Skipping unparseable go release {release.get('version')!r}")
                continue

            files = release.get("files", [])
            checksums = {
                f["filename"]: f["sha256"].lower()
                for f in files
                if f.get("filename") and f.get("sha256")
            }
            entries.append(
                CatalogEntry(
                    version=version,
                    channels=frozenset({"stable"}) if release.get("stable") else frozenset(),
                    files=tuple(f["filename"] for f in files if f.get("filename")),
                    checksums=checksums,
                )
            )
        return entries

    def archive_url(self, version: VersionId) -> str:
        return f"{self.base_url}/go{version}.{self.platform_suffix()}{self.platform.archive_extension}"


__all__ = ["GoPlugin"]
