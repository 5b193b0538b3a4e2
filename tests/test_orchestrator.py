"""
End-to-end tests of the Orchestrator operations.

Network access is mocked with `responses`; installs go through the real
installer using in-memory archives.
"""

import hashlib
import json
import os
import sys
from unittest.mock import patch

import pytest
import responses

from runtimekit.core.config import RuntimeKitConfig, parse_config
from runtimekit.core.exceptions import (
    ExitCode,
    NoVersionSelected,
    RegistryError,
    ResolutionError,
    VersionNotInstalled,
)
from runtimekit.core.filesystem import FilesystemError
from runtimekit.orchestrator import Orchestrator
from runtimekit.versions.resolver import Resolver

NODE_INDEX_URL = "https://nodejs.org/dist/index.json"
NODE_INDEX = json.dumps(
    [
        {"version": "v21.5.0", "lts": False},
        {"version": "v20.10.0", "lts": "Iron"},
        {"version": "v18.17.0", "lts": "Hydrogen"},
    ]
).encode()

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX symlink semantics")


def _mock_node_release(version, archive):
    base = f"https://nodejs.org/dist/v{version}"
    name = f"node-v{version}-linux-x64.tar.gz"
    responses.add(
        responses.GET,
        f"{base}/SHASUMS256.txt",
        body=f"{hashlib.sha256(archive).hexdigest()}  {name}\n",
    )
    responses.add(responses.GET, f"{base}/{name}", body=archive)


class TestConstruction:
    def test_unknown_runtime(self, layout):
        with pytest.raises(ValueError):
            Orchestrator("ruby", layout=layout)

    def test_loads_config_from_layout(self, layout):
        layout.config_file.write_text("mirrors:\n  node: https://mirror.example/node\n")

        orchestrator = Orchestrator("node", layout=layout)

        assert orchestrator.plugin.catalog_url() == "https://mirror.example/node/index.json"


class TestInstall:
    """install and installed."""

    @responses.activate
    def test_install_is_idempotent(self, make_orchestrator, make_archive, layout):
        responses.add(responses.GET, NODE_INDEX_URL, body=NODE_INDEX)
        _mock_node_release("20.10.0", make_archive("node", "20.10.0"))
        orchestrator = make_orchestrator()

        first = orchestrator.install("lts")
        downloads_after_first = len(responses.calls)
        second = orchestrator.install("20.10.0")

        assert not first.already_installed
        assert second.already_installed
        assert second.record.path == first.record.path
        assert len(responses.calls) == downloads_after_first
        assert sorted(p.name for p in layout.store_dir("node").iterdir()) == ["20.10.0"]

    def test_installed_newest_first(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        for version in ("18.17.0", "20.10.0", "18.9.0"):
            install_fake(orchestrator, version)

        assert [r.version for r in orchestrator.installed()] == ["20.10.0", "18.17.0", "18.9.0"]

    @responses.activate
    def test_list_available(self, make_orchestrator):
        responses.add(responses.GET, NODE_INDEX_URL, body=NODE_INDEX)

        listing = make_orchestrator().list_available("lts")

        assert [str(e.version) for e in listing.entries] == ["20.10.0", "18.17.0"]


@posix_only
class TestUse:
    """use, current and the activation link."""

    def test_use_switches_link_and_pointer(self, make_orchestrator, install_fake, layout):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        install_fake(orchestrator, "20.10.0")

        result = orchestrator.use("20")

        assert result.pointer == "20.10.0"
        assert orchestrator.registry.active() == "20.10.0"
        assert os.readlink(layout.current_link("node")) == str(
            layout.install_dir("node", "20.10.0")
        )
        assert orchestrator.current().version == "20.10.0"

    def test_use_alias_stores_alias(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        orchestrator.alias("work", "18.17.0")

        result = orchestrator.use("work")

        assert result.pointer == "work"
        assert orchestrator.registry.active() == "work"
        assert orchestrator.current().alias == "work"

    def test_use_not_installed_changes_nothing(self, make_orchestrator, install_fake, layout):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        orchestrator.use("18.17.0")

        with pytest.raises(VersionNotInstalled):
            orchestrator.use("20.10.0")

        assert orchestrator.registry.active() == "18.17.0"
        assert os.readlink(layout.current_link("node")).endswith("18.17.0")

    def test_dangling_alias_fails_use(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        install_fake(orchestrator, "20.10.0")
        orchestrator.alias("old", "18.17.0")
        orchestrator.remove("18.17.0")

        assert [a.dangling for a in orchestrator.aliases()] == [True]
        with pytest.raises(VersionNotInstalled):
            orchestrator.use("old")

    @posix_only
    def test_use_fails_when_removed_after_resolving(self, make_orchestrator, install_fake, layout):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        install_fake(orchestrator, "20.10.0")
        orchestrator.use("20.10.0")
        other = make_orchestrator()
        resolve = Resolver.resolve

        def resolve_then_remove(resolver, *args, **kwargs):
            resolution = resolve(resolver, *args, **kwargs)
            other.remove("18.17.0")
            return resolution

        with patch.object(Resolver, "resolve", resolve_then_remove):
            with pytest.raises(VersionNotInstalled):
                orchestrator.use("18.17.0")

        assert orchestrator.registry.active() == "20.10.0"
        assert os.readlink(layout.current_link("node")) == str(
            layout.install_dir("node", "20.10.0")
        )

    def test_current_nothing_selected(self, make_orchestrator):
        with pytest.raises(NoVersionSelected):
            make_orchestrator().current()


class TestPrecedence:
    """The full precedence ladder through the orchestrator."""

    @posix_only
    def test_ladder(self, make_orchestrator, install_fake, project_dir):
        nested = project_dir / "src" / "deep"
        nested.mkdir(parents=True)
        base = make_orchestrator()
        for version in ("18.17.0", "20.10.0", "21.5.0"):
            install_fake(base, version)
        base.use("18.17.0")

        assert make_orchestrator(cwd=nested).current().source == "global"

        (project_dir / ".nvmrc").write_text("20\n")
        resolution = make_orchestrator(cwd=nested).current()
        assert (resolution.version, resolution.source) == ("20.10.0", "project")

        env = {"PATH": "/usr/bin", "RUNTIMEKIT_NODE_VERSION": "21.5.0"}
        resolution = make_orchestrator(cwd=nested, environ=env).current()
        assert (resolution.version, resolution.source) == ("21.5.0", "environment")

        plan = make_orchestrator(cwd=nested, environ=env).exec_plan("18", ["node"])
        assert plan.version == "18.17.0"

    def test_configured_order(self, make_orchestrator, install_fake, project_dir):
        config = parse_config({"resolution": {"order": ["project", "environment", "global"]}})
        env = {"RUNTIMEKIT_NODE_VERSION": "18.17.0"}
        orchestrator = make_orchestrator(config=config, environ=env)
        install_fake(orchestrator, "18.17.0")
        install_fake(orchestrator, "20.10.0")
        (project_dir / ".node-version").write_text("20.10.0\n")

        assert orchestrator.current().version == "20.10.0"


class TestAliases:
    """alias, unalias and aliases."""

    def test_alias_resolves_target(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        install_fake(orchestrator, "18.19.0")

        assert orchestrator.alias("work", "18") == "18.19.0"
        assert orchestrator.registry.aliases() == {"work": "18.19.0"}

    def test_alias_to_alias_stores_concrete_version(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        orchestrator.alias("work", "18.17.0")

        assert orchestrator.alias("other", "work") == "18.17.0"
        assert orchestrator.registry.aliases()["other"] == "18.17.0"

    def test_alias_name_must_not_be_version(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")

        with pytest.raises(ResolutionError):
            orchestrator.alias("lts", "18.17.0")

    @posix_only
    def test_unalias_rewrites_active_pointer(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "18.17.0")
        orchestrator.alias("work", "18.17.0")
        orchestrator.use("work")

        assert orchestrator.unalias("work") == "18.17.0"
        assert orchestrator.registry.active() == "18.17.0"
        assert orchestrator.registry.aliases() == {}

    def test_unalias_unknown(self, make_orchestrator):
        with pytest.raises(ResolutionError, match="No node alias named 'x'"):
            make_orchestrator().unalias("x")


class TestRemove:
    """remove."""

    @posix_only
    def test_remove_active_clears_link(self, make_orchestrator, install_fake, layout):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "20.10.0")
        orchestrator.use("20.10.0")

        result = orchestrator.remove("v20.10.0")

        assert result.cleared_active
        assert not layout.install_dir("node", "20.10.0").exists()
        assert not layout.current_link("node").is_symlink()
        assert orchestrator.installed() == []

    def test_remove_not_installed(self, make_orchestrator):
        with pytest.raises(VersionNotInstalled):
            make_orchestrator().remove("20.10.0")

    def test_remove_migrated_keeps_foreign_files(self, make_orchestrator, nvm_root):
        orchestrator = make_orchestrator(environ={"NVM_DIR": str(nvm_root)})
        orchestrator.migrate("nvm")

        orchestrator.remove("18.17.0")

        assert (nvm_root / "versions" / "node" / "v18.17.0" / "bin" / "node").is_file()

    def test_remove_reports_undeleted_files(self, make_orchestrator, install_fake, layout):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "20.10.0")

        with patch("runtimekit.orchestrator.safe_rmtree", side_effect=FilesystemError("busy")):
            outcome = orchestrator.execute("remove", "20.10.0")

        assert outcome.exit_code == ExitCode.ERROR
        assert isinstance(outcome.error, RegistryError)
        assert "clean" in str(outcome.error)
        assert orchestrator.installed() == []
        assert layout.install_dir("node", "20.10.0").exists()

        orchestrator.clean()

        assert not layout.install_dir("node", "20.10.0").exists()


class TestLocalAndExec:
    """local and exec_plan."""

    def test_local_writes_pin(self, make_orchestrator, project_dir, caplog):
        pin = make_orchestrator().local("lts/*")

        assert pin == project_dir / ".node-version"
        assert pin.read_text() == "lts\n"

    def test_local_warns_when_not_installed(self, make_orchestrator, project_dir, caplog):
        make_orchestrator().local("20.10.0")

        assert (project_dir / ".node-version").read_text() == "20.10.0\n"
        assert "pinned but not installed" in caplog.text

    def test_local_rejects_garbage(self, make_orchestrator, project_dir):
        with pytest.raises(ResolutionError):
            make_orchestrator().local("not valid!")
        assert not (project_dir / ".node-version").exists()

    def test_exec_plan(self, make_orchestrator, install_fake, layout):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "20.10.0")
        bin_dir = layout.install_dir("node", "20.10.0") / "bin"

        plan = orchestrator.exec_plan("20.10.0", ["node", "--version"])

        assert plan.argv == [str(bin_dir / "node"), "--version"]
        assert plan.env["PATH"] == f"{bin_dir}{os.pathsep}/usr/bin"
        assert plan.env["RUNTIMEKIT_NODE_VERSION"] == "20.10.0"
        assert plan.bin_dir == bin_dir

    def test_exec_plan_defaults(self, make_orchestrator, install_fake, layout):
        orchestrator = make_orchestrator(environ={})
        install_fake(orchestrator, "20.10.0")

        plan = orchestrator.exec_plan("20", [])

        assert plan.argv == [str(layout.install_dir("node", "20.10.0") / "bin" / "node")]
        assert plan.env["PATH"] == str(layout.install_dir("node", "20.10.0") / "bin")

    def test_exec_plan_keeps_foreign_commands(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "20.10.0")

        assert orchestrator.exec_plan("20", ["make", "test"]).argv == ["make", "test"]


class TestMigrateAndClean:
    """migrate and clean."""

    def test_migrate_twice(self, make_orchestrator, nvm_root):
        orchestrator = make_orchestrator(environ={"NVM_DIR": str(nvm_root)})

        first = orchestrator.migrate("nvm")
        second = orchestrator.migrate("nvm")

        assert sorted(first.imported) == ["18.17.0", "20.10.0"]
        assert second.imported == []
        assert len(orchestrator.installed()) == 2

    @responses.activate
    def test_clean_then_install_after_interruption(
        self, make_orchestrator, make_archive, layout
    ):
        # Leftovers of a killed install: staging, a partial download and an
        # unregistered half-published store directory
        stage = layout.tmp_dir / "stage-node-20.10.0-k1ll3d"
        (stage / "extract").mkdir(parents=True)
        part = layout.downloads_dir / ".node-v20.10.0-linux-x64.tar.gz.x1.part"
        part.write_bytes(b"half")
        os.utime(part, (0, 0))
        orphan = layout.install_dir("node", "20.10.0")
        orphan.mkdir(parents=True)

        orchestrator = make_orchestrator()
        orchestrator.clean()

        assert not stage.exists()
        assert not part.exists()
        assert not orphan.exists()

        responses.add(responses.GET, NODE_INDEX_URL, body=NODE_INDEX)
        _mock_node_release("20.10.0", make_archive("node", "20.10.0"))
        result = orchestrator.install("20.10.0")

        assert not result.already_installed
        assert (orphan / "bin" / "node").is_file()


class TestExecute:
    """execute() maps results and errors to exit codes."""

    def test_success(self, make_orchestrator, install_fake):
        orchestrator = make_orchestrator()
        install_fake(orchestrator, "20.10.0")

        outcome = orchestrator.execute("installed")

        assert outcome.ok
        assert outcome.status == "success"
        assert outcome.exit_code == ExitCode.SUCCESS

    def test_not_installed(self, make_orchestrator):
        outcome = make_orchestrator().execute("use", "20.10.0")

        assert not outcome.ok
        assert isinstance(outcome.error, VersionNotInstalled)
        assert outcome.exit_code == ExitCode.NOT_INSTALLED

    @responses.activate
    def test_not_found(self, make_orchestrator):
        responses.add(responses.GET, NODE_INDEX_URL, body=NODE_INDEX)

        outcome = make_orchestrator().execute("install", "99")

        assert outcome.exit_code == ExitCode.NOT_FOUND

    def test_partial_migration(self, make_orchestrator, nvm_root):
        outcome = make_orchestrator(environ={"NVM_DIR": str(nvm_root)}).execute("migrate", "nvm")

        assert outcome.status == "partial"
        assert outcome.ok
        assert outcome.exit_code == ExitCode.MIGRATION_PARTIAL

    def test_nothing_selected(self, make_orchestrator):
        assert make_orchestrator().execute("current").exit_code == ExitCode.RESOLUTION_ERROR

    def test_unknown_operation(self, make_orchestrator):
        outcome = make_orchestrator().execute("upgrade")

        assert outcome.status == "failed"
        assert outcome.exit_code == ExitCode.ERROR

    def test_all_operations_exist(self):
        for name in Orchestrator.OPERATIONS:
            assert callable(getattr(Orchestrator, name))


def test_default_config_when_file_missing(layout):
    assert Orchestrator("go", layout=layout).config == RuntimeKitConfig()
