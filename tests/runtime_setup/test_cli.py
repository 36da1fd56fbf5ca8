"""Tests for the bootstrapper CLI: commands, exit codes and error presentation."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from Piton.RuntimeSetup import __version__
from Piton.RuntimeSetup import cli as cli_mod
from Piton.RuntimeSetup.cli import app
from Piton.RuntimeSetup.descriptors import current_target_id
from Piton.RuntimeSetup.identity import identity_path
from Piton.RuntimeSetup.testing import FakeLauncher, closed_port, descriptor_for, make_targz, write_descriptor_file

runner = CliRunner()


def _flat(text: str) -> str:
    return " ".join(text.split())


@pytest.fixture
def install_dir(tmp_path, runtime_server, runtime_entries) -> Path:
    payload = make_targz(runtime_entries)
    descriptor = descriptor_for(payload, runtime_server.serve("/rt.tar.gz", payload))
    write_descriptor_file(tmp_path / "app", {current_target_id(): descriptor, "linux-x86_64": descriptor})
    return tmp_path / "app"


class TestCliAppBasics:
    """Tests for basic CLI app functionality."""

    def test_app_shows_help_without_command(self):
        result = runner.invoke(app, [])
        assert result.exit_code in [0, 2]
        assert "Usage" in result.output

    def test_version_option_shows_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"piton-bootstrap {__version__}" in result.output

    def test_target_prints_current_target(self):
        result = runner.invoke(app, ["--quiet", "target"])
        assert result.exit_code == 0
        assert result.output.strip() == current_target_id()

    def test_invalid_log_level_is_rejected(self):
        result = runner.invoke(app, ["--log-level", "chatty", "target"])
        assert result.exit_code == 1
        assert "Invalid settings" in result.output


class TestSetupAndCheck:
    """Provisioning and inspection commands."""

    def test_check_reports_missing_runtime(self, install_dir):
        result = runner.invoke(app, ["--quiet", "--install-dir", str(install_dir), "check"])
        assert result.exit_code == 1
        assert "not_installed" in result.output

    def test_setup_installs_then_check_is_compatible(self, install_dir):
        setup = runner.invoke(
            app,
            ["--quiet", "--ui", "none", "--install-dir", str(install_dir), "setup", "--target", "linux-x86_64"],
        )
        assert setup.exit_code == 0, setup.output
        assert "installed linux-x86_64 8.0.5" in setup.output
        assert identity_path(install_dir / "piton-runtime").read_text(encoding="utf-8") == "linux-x86_64 8.0.5"

        check = runner.invoke(
            app, ["--quiet", "--install-dir", str(install_dir), "check", "--target", "linux-x86_64"]
        )
        assert check.exit_code == 0
        assert "compatible" in check.output

        again = runner.invoke(
            app,
            ["--quiet", "--ui", "none", "--install-dir", str(install_dir), "setup", "--target", "linux-x86_64"],
        )
        assert again.exit_code == 0
        assert "reused linux-x86_64 8.0.5" in again.output

    def test_unreachable_server_asks_to_check_connection(self, tmp_path):
        url = f"http://127.0.0.1:{closed_port()}/rt.tar.gz"
        write_descriptor_file(tmp_path, {"linux-x86_64": descriptor_for(b"x", url)})

        result = runner.invoke(
            app,
            ["--quiet", "--ui", "none", "--install-dir", str(tmp_path), "setup", "--target", "linux-x86_64"],
        )

        assert result.exit_code == 1
        assert "check your internet connection" in _flat(result.output)
        assert not identity_path(tmp_path / "piton-runtime").exists()

    def test_missing_descriptor_is_reported(self, tmp_path):
        result = runner.invoke(app, ["--quiet", "--install-dir", str(tmp_path), "setup"])

        assert result.exit_code == 1
        assert "descriptor_parse_error" in _flat(result.output)

    def test_unsupported_target_is_reported(self, install_dir):
        result = runner.invoke(
            app, ["--quiet", "--install-dir", str(install_dir), "setup", "--target", "plan9-mips"]
        )

        assert result.exit_code == 1
        assert "plan9-mips" in _flat(result.output)


class TestRunCommand:
    """Launching applications through the prepared runtime."""

    def test_run_launches_app_and_returns_its_exit_code(self, install_dir, monkeypatch):
        launcher = FakeLauncher(exit_code=7)
        monkeypatch.setattr(cli_mod, "_make_launcher", lambda: launcher)
        app_path = install_dir / "App.dll"
        app_path.write_bytes(b"MZ")

        result = runner.invoke(
            app, ["--quiet", "--ui", "none", "run", str(app_path), "--flag", "value"]
        )

        assert result.exit_code == 7, result.output
        runtime_dir, launched, args = launcher.calls[0]
        assert runtime_dir == install_dir.resolve() / "piton-runtime"
        assert launched == app_path.resolve()
        assert args == ("--flag", "value")

    def test_hosting_failure_exits_with_failure(self, install_dir, monkeypatch):
        monkeypatch.setattr(cli_mod, "_make_launcher", lambda: FakeLauncher(error="host crashed"))
        app_path = install_dir / "App.dll"
        app_path.write_bytes(b"MZ")

        result = runner.invoke(app, ["--quiet", "--ui", "none", "run", str(app_path)])

        assert result.exit_code == 1
        assert "host crashed" in _flat(result.output)

    def test_failed_setup_does_not_launch(self, tmp_path, monkeypatch):
        launcher = FakeLauncher()
        monkeypatch.setattr(cli_mod, "_make_launcher", lambda: launcher)
        payload = make_targz([])
        url = f"http://127.0.0.1:{closed_port()}/rt.tar.gz"
        write_descriptor_file(tmp_path, {current_target_id(): descriptor_for(payload, url)})
        app_path = tmp_path / "App.dll"
        app_path.write_bytes(b"MZ")

        result = runner.invoke(app, ["--quiet", "--ui", "none", "run", str(app_path)])

        assert result.exit_code == 1
        assert launcher.calls == []
