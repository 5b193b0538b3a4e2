"""
Tests for importing versions from other version managers.
"""

import pytest

from runtimekit.core.exceptions import MigrationError
from runtimekit.core.platform import PlatformInfo
from runtimekit.core.registry import VersionRegistry
from runtimekit.runtimes import get_plugin
from runtimekit.versions.migration import MIGRATION_SOURCES, MigrationImporter, tools_for_runtime

LINUX_X64 = PlatformInfo("linux", "x64")


@pytest.fixture
def make_importer(layout, lock_manager, node_plugin, node_registry, tmp_path):
    def _make(environ, plugin=None, registry=None, copy=False):
        return MigrationImporter(
            plugin or node_plugin,
            layout,
            registry or node_registry,
            lock_manager,
            copy=copy,
            environ=environ,
            home=tmp_path / "home",
        )

    return _make


class TestSources:
    def test_tools_for_runtime(self):
        assert tools_for_runtime("node") == ["n", "nvm"]
        assert tools_for_runtime("rust") == ["rustup"]
        assert tools_for_runtime("python") == ["pyenv"]
        assert tools_for_runtime("go") == ["gvm"]

    def test_default_root_uses_home(self, make_importer, tmp_path):
        importer = make_importer({})
        assert importer.versions_dir(MIGRATION_SOURCES["nvm"]) == (
            tmp_path / "home" / ".nvm" / "versions" / "node"
        )

    def test_env_overrides_root(self, make_importer, tmp_path):
        importer = make_importer({"NVM_DIR": str(tmp_path / "custom")})
        assert importer.source_root(MIGRATION_SOURCES["nvm"]) == tmp_path / "custom"


class TestMigrateInPlace:
    """Default mode registers foreign installs without copying."""

    def test_nvm(self, make_importer, nvm_root, node_registry, layout):
        report = make_importer({"NVM_DIR": str(nvm_root)}).migrate("nvm")

        assert sorted(report.imported) == ["18.17.0", "20.10.0"]
        assert report.partial
        reasons = {path.name: reason for path, reason in report.skipped}
        assert reasons["v16.0.0"] == "missing executables: node"
        assert reasons["system"] == "unrecognized version directory name"

        record = node_registry.get("18.17.0")
        assert record.external
        assert record.source == "migrated:nvm"
        assert record.path == nvm_root / "versions" / "node" / "v18.17.0"
        assert not layout.install_dir("node", "18.17.0").exists()

    def test_idempotent(self, make_importer, nvm_root, node_registry):
        importer = make_importer({"NVM_DIR": str(nvm_root)})
        importer.migrate("nvm")
        before = node_registry.installed()

        report = importer.migrate("nvm")

        assert report.imported == []
        assert sorted(report.already_present) == ["18.17.0", "20.10.0"]
        assert node_registry.installed() == before

    def test_foreign_tree_untouched(self, make_importer, nvm_root):
        before = sorted(str(p) for p in nvm_root.rglob("*"))

        make_importer({"NVM_DIR": str(nvm_root)}).migrate("nvm")

        assert sorted(str(p) for p in nvm_root.rglob("*")) == before

    def test_rustup_skips_channel_toolchains(self, make_importer, rustup_root, layout, lock_manager):
        plugin = get_plugin("rust", platform=LINUX_X64)
        registry = VersionRegistry(layout, "rust", lock_manager)

        report = make_importer(
            {"RUSTUP_HOME": str(rustup_root)}, plugin=plugin, registry=registry
        ).migrate("rustup")

        assert report.imported == ["1.75.0"]
        assert [(p.name, r) for p, r in report.skipped] == [
            ("stable-x86_64-unknown-linux-gnu", "channel toolchain has no fixed version")
        ]

    def test_n_layout(self, make_importer, tmp_path, node_registry):
        bin_dir = tmp_path / "prefix" / "n" / "versions" / "node" / "20.10.0" / "bin"
        bin_dir.mkdir(parents=True)
        (bin_dir / "node").write_text("node")

        report = make_importer({"N_PREFIX": str(tmp_path / "prefix")}).migrate("n")

        assert report.imported == ["20.10.0"]
        assert not report.partial
        assert node_registry.get("20.10.0").source == "migrated:n"


class TestMigrateCopy:
    """Copy mode moves installs into the store."""

    def test_copy(self, make_importer, nvm_root, node_registry, layout):
        report = make_importer({"NVM_DIR": str(nvm_root)}, copy=True).migrate("nvm")

        assert sorted(report.imported) == ["18.17.0", "20.10.0"]
        record = node_registry.get("20.10.0")
        assert not record.external
        assert record.path == layout.install_dir("node", "20.10.0")
        assert (record.path / "bin" / "node").is_file()
        assert list(layout.tmp_dir.iterdir()) == []
        assert (nvm_root / "versions" / "node" / "v20.10.0" / "bin" / "node").is_file()


class TestMigrateErrors:
    def test_unknown_tool(self, make_importer):
        with pytest.raises(MigrationError, match="Unknown migration source 'volta'"):
            make_importer({}).migrate("volta")

    def test_wrong_runtime(self, make_importer):
        with pytest.raises(MigrationError, match="pyenv manages python, not node"):
            make_importer({}).migrate("pyenv")

    def test_missing_root(self, make_importer, tmp_path):
        with pytest.raises(MigrationError, match="No nvm installation found"):
            make_importer({"NVM_DIR": str(tmp_path / "nowhere")}).migrate("nvm")
