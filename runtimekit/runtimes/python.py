"""
Python runtime plugin.

Releases are read from the directory listing at python.org/ftp/python/.
Prebuilt archives follow the ``Python-<version>-<platform>.tar.xz`` naming;
point ``mirrors.python`` at a mirror that serves them under that scheme.
"""

import logging
import os
import re
from pathlib import Path
from typing import List

from runtimekit.runtimes.base import CatalogEntry, RuntimePlugin
from runtimekit.versions.tokens import VersionId

logger = logging.getLogger(__name__)

_HREF_RE = re.compile(r'href="(?P<version>\d+\.\d+(?:\.\d+)?)/"')

_PLATFORM_SUFFIXES = {
    ("macos", "x64"): "macosx10.9.x86_64",
    ("macos", "arm64"): "macos11.0.arm64",
    ("linux", "x64"): "x86_64",
    ("linux", "arm64"): "aarch64",
    ("linux", "arm"): "armv7l",
    ("windows", "x64"): "amd64",
    ("windows", "x86"): "win32",
}


class PythonPlugin(RuntimePlugin):
    """CPython builds laid out as ``Python-<version>-<platform>.tar.xz``."""

    name = "python"
    display_name = "Python"
    channel = "stable"
    pin_files = (".python-version",)
    default_base_url = "https://www.python.org/ftp/python"

    @property
    def executables(self):
        return ("python",) if self.platform.is_windows else ("python3",)

    def platform_suffix(self) -> str:
        key = (self.platform.os, self.platform.arch)
        if key not in _PLATFORM_SUFFIXES:
            raise ValueError(f"No Python build naming known for {self.platform}")
        return _PLATFORM_SUFFIXES[key]

    def catalog_url(self) -> str:
        return f"{self.base_url}/"

    def parse_catalog(self, data: bytes) -> List[CatalogEntry]:
        html = data.decode("utf-8", errors="replace")
        seen = {}
        for match in _HREF_RE.finditer(html):
            version = self.parse_version(match.group("version"))
            seen.setdefault(version, CatalogEntry(version=version, channels=frozenset({"stable"})))
        return list(seen.values())

    def archive_url(self, version: VersionId) -> str:
        return f"{self.base_url}/{version}/Python-{version}-{self.platform_suffix()}.tar.xz"

    def bin_dir(self, install_path: Path) -> Path:
        if self.platform.is_windows:
            return Path(install_path)
        return Path(install_path) / "bin"

    def prepare_layout(self, root: Path) -> None:
        """Provide an unversioned ``python`` next to ``python3``."""
        if self.platform.is_windows:
            return
        bin_dir = self.bin_dir(root)
        python3 = bin_dir / "python3"
        python = bin_dir / "python"
        if python3.exists() and not python.exists() and not python.is_symlink():
            os.symlink("python3", python)
            logger.debug(f"Linked {python} -> python3")


__all__ = ["PythonPlugin"]
