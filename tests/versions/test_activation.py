"""
Tests for the Activator.
"""

import os
import sys
import threading

import pytest

from runtimekit.core.exceptions import ActivationFailed
from runtimekit.core.platform import PlatformInfo
from runtimekit.versions.activation import COPY_MARKER, Activator, LinkStrategy

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX symlink semantics")

LINUX_X64 = PlatformInfo("linux", "x64")


@pytest.fixture
def installs(layout):
    """Two fake node installs in the store."""
    paths = {}
    for version in ("18.17.0", "20.10.0"):
        bin_dir = layout.install_dir("node", version) / "bin"
        bin_dir.mkdir(parents=True)
        (bin_dir / "node").write_text(version)
        paths[version] = layout.install_dir("node", version)
    return paths


@pytest.fixture
def activator(node_plugin, layout):
    return Activator(node_plugin, layout, platform=LINUX_X64)


class TestSymlink:
    """Test the default symlink strategy."""

    def test_activate(self, activator, installs, layout):
        result = activator.activate(installs["20.10.0"])

        link = layout.current_link("node")
        assert result.strategy is LinkStrategy.SYMLINK
        assert result.atomic
        assert result.previous_target is None
        assert link.is_symlink()
        assert (link / "bin" / "node").read_text() == "20.10.0"
        assert activator.current_target() == installs["20.10.0"]

    def test_switch_reports_previous(self, activator, installs):
        activator.activate(installs["18.17.0"])

        result = activator.activate(installs["20.10.0"])

        assert result.previous_target == installs["18.17.0"]
        assert activator.current_target() == installs["20.10.0"]

    def test_no_temp_links_left(self, activator, installs, layout):
        activator.activate(installs["18.17.0"])
        activator.activate(installs["20.10.0"])

        assert [p.name for p in layout.current_dir.iterdir()] == ["node"]

    def test_missing_target(self, activator, layout):
        with pytest.raises(ActivationFailed, match="does not exist"):
            activator.activate(layout.install_dir("node", "9.9.9"))

    def test_path_entries(self, activator, installs, layout):
        assert activator.path_entries() == []
        activator.activate(installs["20.10.0"])
        assert activator.path_entries() == [layout.current_link("node") / "bin"]

    @pytest.mark.slow
    def test_readers_never_see_missing_link(self, activator, installs, layout):
        """Concurrent readers always resolve the link to one of the installs."""
        activator.activate(installs["18.17.0"])
        node = layout.current_link("node") / "bin" / "node"
        stop = threading.Event()
        seen, failures = set(), []

        def reader():
            while not stop.is_set():
                try:
                    seen.add(node.read_text())
                except OSError as e:
                    failures.append(e)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for i in range(200):
                activator.activate(installs["20.10.0" if i % 2 else "18.17.0"])
        finally:
            stop.set()
            thread.join()

        assert failures == []
        assert seen <= {"18.17.0", "20.10.0"}


class TestCopyStrategy:
    """Test the copy fallback."""

    def test_copy(self, node_plugin, layout, installs, caplog):
        activator = Activator(node_plugin, layout, strategy="copy", platform=LINUX_X64)

        result = activator.activate(installs["18.17.0"])

        link = layout.current_link("node")
        assert result.strategy is LinkStrategy.COPY
        assert not result.atomic
        assert not link.is_symlink()
        assert (link / COPY_MARKER).read_text() == str(installs["18.17.0"])
        assert activator.current_target() == installs["18.17.0"]
        assert "not atomic" in caplog.text

    def test_replace_copy(self, node_plugin, layout, installs):
        activator = Activator(node_plugin, layout, strategy="copy", platform=LINUX_X64)
        activator.activate(installs["18.17.0"])

        result = activator.activate(installs["20.10.0"])

        assert result.previous_target == installs["18.17.0"]
        assert (layout.current_link("node") / "bin" / "node").read_text() == "20.10.0"

    def test_symlink_replaces_copy(self, node_plugin, layout, installs):
        Activator(node_plugin, layout, strategy="copy", platform=LINUX_X64).activate(
            installs["18.17.0"]
        )

        result = Activator(node_plugin, layout, platform=LINUX_X64).activate(installs["20.10.0"])

        assert result.strategy is LinkStrategy.SYMLINK
        assert not result.atomic
        assert layout.current_link("node").is_symlink()

    def test_falls_back_when_symlink_fails(self, activator, installs, monkeypatch):
        def no_symlinks(*args, **kwargs):
            raise OSError("symlinks not permitted")

        monkeypatch.setattr(os, "symlink", no_symlinks)

        result = activator.activate(installs["20.10.0"])

        assert result.strategy is LinkStrategy.COPY

    def test_junction_only_on_windows(self, node_plugin, layout, installs):
        activator = Activator(node_plugin, layout, strategy="junction", platform=LINUX_X64)

        with pytest.raises(ActivationFailed, match="junction"):
            activator.activate(installs["20.10.0"])


class TestDeactivateAndRestore:
    def test_deactivate(self, activator, installs, layout):
        assert activator.deactivate() is False
        activator.activate(installs["20.10.0"])

        assert activator.deactivate() is True
        assert not layout.current_link("node").is_symlink()
        assert installs["20.10.0"].is_dir()

    def test_broken_link(self, activator, installs):
        activator.activate(installs["20.10.0"])
        (installs["20.10.0"] / "bin" / "node").unlink()
        (installs["20.10.0"] / "bin").rmdir()
        installs["20.10.0"].rmdir()

        assert activator.is_broken()

    def test_restore_previous(self, activator, installs):
        first = activator.activate(installs["18.17.0"])
        second = activator.activate(installs["20.10.0"])

        activator.restore(second.previous_target)
        assert activator.current_target() == installs["18.17.0"]

        activator.restore(first.previous_target)
        assert activator.current_target() is None
