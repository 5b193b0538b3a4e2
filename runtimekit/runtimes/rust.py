"""
Rust runtime plugin.

Stable releases are discovered from ``manifests.txt`` on static.rust-lang.org.
The standalone installer tarball ships one directory per component
(``rustc/``, ``cargo/``, ``rust-std-<target>/`` ...); prepare_layout merges
them into a single sysroot so that ``bin/rustc`` finds its ``lib/``.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import List, Optional

from runtimekit.core.download import FetchClient
from runtimekit.core.exceptions import FetchError, NetworkUnavailable
from runtimekit.core.filesystem import safe_rmtree
from runtimekit.runtimes.base import CatalogEntry, RuntimePlugin, parse_checksum_file
from runtimekit.versions.tokens import VersionId

logger = logging.getLogger(__name__)

_MANIFEST_RE = re.compile(
    r"/(?P<date>\d{4}-\d{2}-\d{2})/channel-rust-(?P<version>\d+\.\d+\.\d+)\.toml\s*$"
)

_TARGETS = {
    ("linux", "x64"): "x86_64-unknown-linux-gnu",
    ("linux", "arm64"): "aarch64-unknown-linux-gnu",
    ("linux", "arm"): "armv7-unknown-linux-gnueabihf",
    ("macos", "x64"): "x86_64-apple-darwin",
    ("macos", "arm64"): "aarch64-apple-darwin",
    ("windows", "x64"): "x86_64-pc-windows-msvc",
    ("windows", "x86"): "i686-pc-windows-msvc",
    ("windows", "arm64"): "aarch64-pc-windows-msvc",
}

# Gathered when the tarball has no 'components' file
DEFAULT_COMPONENTS = ("rustc", "cargo")


def _merge_into(source: Path, destination: Path) -> None:
    """Move the contents of source into destination, merging directories."""
    destination.mkdir(parents=True, exist_ok=True)
    for child in source.iterdir():
        target = destination / child.name
        if child.is_dir() and not child.is_symlink() and target.is_dir():
            _merge_into(child, target)
            continue
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)
        shutil.move(str(child), str(target))


class RustPlugin(RuntimePlugin):
    """Rust toolchains from the standalone installer tarballs."""

    name = "rust"
    display_name = "Rust"
    channel = "stable"
    pin_files = (".rust-version",)
    executables = ("rustc", "cargo")
    default_base_url = "https://static.rust-lang.org"

    def target_triple(self) -> str:
        key = (self.platform.os, self.platform.arch)
        if key not in _TARGETS:
            raise ValueError(f"Rust has no prebuilt toolchain for {self.platform}")
        return _TARGETS[key]

    def catalog_url(self) -> str:
        return f"{self.base_url}/manifests.txt"

    def parse_catalog(self, data: bytes) -> List[CatalogEntry]:
        latest_by_version = {}
        for line in data.decode("utf-8", errors="replace").splitlines():
            match = _MANIFEST_RE.search(line.strip())
            if not match:
                continue
            version = self.parse_version(match.group("version"))
            # Point releases can be re-published; keep the newest manifest date
            latest_by_version[version] = CatalogEntry(
                version=version,
                channels=frozenset({"stable"}),
                date=match.group("date"),
            )
        return list(latest_by_version.values())

    def archive_url(self, version: VersionId) -> str:
        # Installer tarballs are published as .tar.gz on every platform
        return f"{self.base_url}/dist/rust-{version}-{self.target_triple()}.tar.gz"

    def checksum_for(self, entry: CatalogEntry, client: FetchClient) -> Optional[str]:
        url = f"{self.archive_url(entry.version)}.sha256"
        try:
            text = client.fetch(url).decode("utf-8", errors="replace")
        except (FetchError, NetworkUnavailable) as e:
            logger.warning(f"No checksum for rust {entry.version}: {e}")
            return None
        return parse_checksum_file(text, self.archive_name(entry.version))

    def prepare_layout(self, root: Path) -> None:
        """Merge component directories (rustc/bin, cargo/bin, ...) into root."""
        components_file = root / "components"
        if components_file.is_file():
            components = [
                line.strip()
                for line in components_file.read_text(encoding="utf-8").splitlines()
                if line.strip()
            ]
        else:
            components = list(DEFAULT_COMPONENTS) + sorted(
                p.name for p in root.glob("rust-std-*") if p.is_dir()
            )

        for component in components:
            component_dir = root / component
            if not component_dir.is_dir():
                logger.debug(f"Component {component} not present in archive")
                continue
            manifest = component_dir / "manifest.in"
            if manifest.exists():
                manifest.unlink()
            _merge_into(component_dir, root)
            safe_rmtree(component_dir, require_prefix=root)
            logger.debug(f"Merged rust component {component}")


__all__ = ["RustPlugin"]
