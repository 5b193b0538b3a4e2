"""
Pytest configuration and shared fixtures for runtimekit tests.
"""

import io
import tarfile
import zipfile
from pathlib import Path
from typing import Callable, Dict

import pytest

from runtimekit.core.config import RuntimeKitConfig
from runtimekit.core.directory import HOME_ENV_VAR, DataLayout
from runtimekit.core.locking import LockManager
from runtimekit.core.platform import PlatformInfo
from runtimekit.core.registry import VersionRegistry
from runtimekit.orchestrator import Orchestrator
from runtimekit.runtimes import get_plugin

LINUX_X64 = PlatformInfo(os="linux", arch="x64")

SCRIPT = "#!/bin/sh\necho fake\n"


# =============================================================================
# Archive builders
# =============================================================================


def build_tar_gz(files: Dict[str, str]) -> bytes:
    """Build a .tar.gz in memory; files under bin/ are made executable."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if "/bin/" in f"/{name}" else 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def build_zip(files: Dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def runtime_files(runtime: str, version: str) -> Dict[str, str]:
    """Minimal archive contents that pass each plugin's layout validation."""
    if runtime == "node":
        root = f"node-v{version}-linux-x64"
        return {f"{root}/bin/node": SCRIPT, f"{root}/bin/npm": SCRIPT}
    if runtime == "rust":
        root = f"rust-{version}-x86_64-unknown-linux-gnu"
        return {
            f"{root}/components": "rustc\ncargo\n",
            f"{root}/rustc/bin/rustc": SCRIPT,
            f"{root}/rustc/lib/librustc_driver.so": "lib",
            f"{root}/cargo/bin/cargo": SCRIPT,
        }
    if runtime == "python":
        root = f"Python-{version}-x86_64"
        return {f"{root}/bin/python3": SCRIPT, f"{root}/lib/os.py": "# os"}
    if runtime == "go":
        return {"go/bin/go": SCRIPT, "go/bin/gofmt": SCRIPT, "go/VERSION": f"go{version}"}
    raise ValueError(runtime)


@pytest.fixture
def make_archive() -> Callable[[str, str], bytes]:
    """Return a function building a valid .tar.gz for (runtime, version)."""

    def _make(runtime: str, version: str) -> bytes:
        return build_tar_gz(runtime_files(runtime, version))

    return _make


@pytest.fixture
def tar_gz() -> Callable[[Dict[str, str]], bytes]:
    """Return build_tar_gz for tests that need custom archive contents."""
    return build_tar_gz


# =============================================================================
# Isolated data directory
# =============================================================================


@pytest.fixture
def layout(tmp_path, monkeypatch) -> DataLayout:
    """Isolated $RUNTIMEKIT_HOME with the directory structure created."""
    home = tmp_path / "runtimekit-home"
    monkeypatch.setenv(HOME_ENV_VAR, str(home))
    return DataLayout(home).ensure()


@pytest.fixture
def lock_manager(layout) -> LockManager:
    return LockManager(layout.lock_dir)


@pytest.fixture
def node_plugin():
    return get_plugin("node", platform=LINUX_X64)


@pytest.fixture
def node_registry(layout, lock_manager) -> VersionRegistry:
    return VersionRegistry(layout, "node", lock_manager, lock_timeout=5)


@pytest.fixture
def project_dir(tmp_path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def make_orchestrator(layout, project_dir):
    """Return a factory for orchestrators bound to the isolated layout."""

    def _make(runtime: str = "node", config: RuntimeKitConfig = None, **kwargs) -> Orchestrator:
        kwargs.setdefault("cwd", project_dir)
        kwargs.setdefault("environ", {"PATH": "/usr/bin"})
        return Orchestrator(
            runtime,
            layout=layout,
            config=config or RuntimeKitConfig(),
            platform=LINUX_X64,
            **kwargs,
        )

    return _make


@pytest.fixture
def install_fake(make_archive):
    """Return a function installing a fake version through the real installer."""

    def _install(orchestrator: Orchestrator, version: str):
        plugin = orchestrator.plugin
        return orchestrator.installer.install(
            plugin.parse_version(version),
            make_archive(plugin.name, version),
            archive_name=f"{plugin.name}-{version}.tar.gz",
        )

    return _install


# =============================================================================
# Foreign tool layouts
# =============================================================================


def make_executables(bin_dir: Path, *names: str) -> None:
    bin_dir.mkdir(parents=True, exist_ok=True)
    for name in names:
        exe = bin_dir / name
        exe.write_text(SCRIPT)
        exe.chmod(0o755)


@pytest.fixture
def nvm_root(tmp_path) -> Path:
    """nvm tree with two valid versions, one broken entry and one stray dir."""
    root = tmp_path / "nvm"
    versions = root / "versions" / "node"
    make_executables(versions / "v18.17.0" / "bin", "node", "npm")
    make_executables(versions / "v20.10.0" / "bin", "node", "npm")
    (versions / "v16.0.0").mkdir(parents=True)  # no bin/node
    (versions / "system").mkdir()
    return root


@pytest.fixture
def rustup_root(tmp_path) -> Path:
    root = tmp_path / "rustup"
    toolchains = root / "toolchains"
    make_executables(toolchains / "1.75.0-x86_64-unknown-linux-gnu" / "bin", "rustc", "cargo")
    make_executables(toolchains / "stable-x86_64-unknown-linux-gnu" / "bin", "rustc", "cargo")
    return root
