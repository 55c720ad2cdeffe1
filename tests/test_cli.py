"""Tests for CLI commands."""

import errno
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import pytest
import structlog
from click.testing import CliRunner

from proc_manager.cli import main
from proc_manager.config import Config


@pytest.fixture(autouse=True)
def reset_structlog():
    """main() points structlog at the runner's stderr, which is closed afterwards."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def default_config():
    """Config.load() returns defaults regardless of the user's config file."""
    with patch("proc_manager.config.Config.load", return_value=Config()):
        yield


@pytest.fixture
def tmp_config_dir(tmp_path: Path):
    with patch.object(Config, "config_dir", new_callable=PropertyMock, return_value=tmp_path):
        yield tmp_path


def test_help(runner: CliRunner) -> None:
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("serve", "snapshot", "kill", "status", "tui", "config"):
        assert command in result.output


def test_invalid_config_is_reported(runner: CliRunner) -> None:
    with patch("proc_manager.config.Config.load", side_effect=ValueError("port must be in 0-65535")):
        result = runner.invoke(main, ["status"])
    assert result.exit_code == 1
    assert "port must be in 0-65535" in result.output


class TestSnapshotCommand:
    """Tests for the snapshot command."""

    def test_prints_payload(self, runner: CliRunner, fake_proc, default_config) -> None:
        for pid in (20, 10):
            fake_proc.add_process(pid, f"p{pid}")

        with patch("proc_manager.collector.resolve_current_user", return_value="alice"):
            result = runner.invoke(main, ["snapshot", "--proc-root", str(fake_proc.root)])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["current_user"] == "alice"
        assert [p["name"] for p in data["processes"]] == ["p10", "p20"]

    def test_warnings_stay_off_stdout(
        self, runner: CliRunner, tmp_path: Path, default_config
    ) -> None:
        ps = MagicMock(stdout="alice 5 bash S 100 1000 0.0 0.1\n")
        with (
            patch("proc_manager.collector.subprocess.run", return_value=ps),
            patch("proc_manager.collector.resolve_current_user", return_value="alice"),
        ):
            result = runner.invoke(main, ["snapshot", "--proc-root", str(tmp_path / "missing")])

        assert result.exit_code == 0
        assert [p["pid"] for p in json.loads(result.stdout)["processes"]] == [5]
        assert "snapshot_source_unavailable" in result.stderr

    def test_all_sources_failing(self, runner: CliRunner, tmp_path: Path, default_config) -> None:
        with patch("proc_manager.collector.subprocess.run", side_effect=OSError("no ps")):
            result = runner.invoke(main, ["snapshot", "--proc-root", str(tmp_path / "missing")])
        assert result.exit_code == 1
        assert "Failed to read process list" in result.output


class TestKillCommand:
    """Tests for the kill command."""

    def test_success(self, runner: CliRunner) -> None:
        with patch("proc_manager.api.os.kill") as kill:
            result = runner.invoke(main, ["kill", "1234"])
        assert result.exit_code == 0
        assert "Terminated PID 1234" in result.output
        kill.assert_called_once()

    def test_invalid_pid(self, runner: CliRunner) -> None:
        with patch("proc_manager.api.os.kill") as kill:
            result = runner.invoke(main, ["kill", "0"])
        assert result.exit_code == 1
        assert "Invalid PID" in result.output
        kill.assert_not_called()

    def test_os_failure(self, runner: CliRunner) -> None:
        with patch(
            "proc_manager.api.os.kill",
            side_effect=PermissionError(errno.EPERM, "Operation not permitted"),
        ):
            result = runner.invoke(main, ["kill", "1"])
        assert result.exit_code == 1
        assert "Operation not permitted" in result.output
        assert f"errno {errno.EPERM}" in result.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_stopped(self, runner: CliRunner, default_config) -> None:
        with patch("proc_manager.server.running_server_pid", return_value=None):
            result = runner.invoke(main, ["status"])
        assert result.exit_code == 0
        assert "Server: stopped" in result.output

    def test_running(self, runner: CliRunner, default_config) -> None:
        with patch("proc_manager.server.running_server_pid", return_value=4242):
            result = runner.invoke(main, ["status"])
        assert result.exit_code == 0
        assert "Server: running (PID 4242)" in result.output
        assert "0.0.0.0:8080" in result.output


class TestServeCommand:
    """Tests for the serve command."""

    def test_applies_overrides(self, runner: CliRunner, default_config) -> None:
        with patch("proc_manager.server.run_server", new_callable=AsyncMock) as run:
            result = runner.invoke(main, ["serve", "--host", "127.0.0.1", "--port", "9999"])
        assert result.exit_code == 0
        cfg = run.call_args.args[0]
        assert cfg.server.host == "127.0.0.1"
        assert cfg.server.port == 9999

    def test_already_running(self, runner: CliRunner, default_config) -> None:
        with patch(
            "proc_manager.server.run_server",
            new_callable=AsyncMock,
            side_effect=RuntimeError("Server is already running"),
        ):
            result = runner.invoke(main, ["serve"])
        assert result.exit_code == 1
        assert "already running" in result.output


def test_tui_url_override(runner: CliRunner, default_config) -> None:
    with patch("proc_manager.tui.run_tui") as run_tui:
        result = runner.invoke(main, ["tui", "--url", "http://10.0.0.2:8080"])
    assert result.exit_code == 0
    assert run_tui.call_args.args[0].tui.api_url == "http://10.0.0.2:8080"


class TestConfigCommands:
    """Tests for the config command group."""

    def test_show(self, runner: CliRunner, default_config) -> None:
        result = runner.invoke(main, ["config", "show"])
        assert result.exit_code == 0
        for section in ("[server]", "[collector]", "[system]", "[tui]"):
            assert section in result.output
        assert "port = 8080" in result.output

    def test_path(self, runner: CliRunner, tmp_config_dir: Path) -> None:
        result = runner.invoke(main, ["config", "path"])
        assert result.exit_code == 0
        assert result.output.strip() == str(tmp_config_dir / "config.toml")

    def test_reset(self, runner: CliRunner, tmp_config_dir: Path) -> None:
        path = tmp_config_dir / "config.toml"
        path.write_text("[server]\nport = 1\n")

        result = runner.invoke(main, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert Config.load(path).server.port == 8080

    def test_edit_creates_missing_file(self, runner: CliRunner, tmp_config_dir: Path) -> None:
        with patch("subprocess.run") as run:
            result = runner.invoke(main, ["config", "edit"], env={"EDITOR": "true"})
        assert result.exit_code == 0
        assert (tmp_config_dir / "config.toml").exists()
        assert run.call_args.args[0] == ["true", str(tmp_config_dir / "config.toml")]
