"""Tests for CLI commands - configure, schedule, cancel, status."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from syncbridge.client.cli import cli
from syncbridge.client.state import LocalState
from syncbridge.sync.progress import DiagnosticsStore


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path: Path):  # type: ignore[no-untyped-def]
    """Point the CLI at a temporary config directory."""
    with patch("syncbridge.client.cli.config.get_config_dir", return_value=tmp_path):
        yield tmp_path


@pytest.fixture
def configured(config_dir: Path) -> Path:
    """Write a config for a test server."""
    (config_dir / "config.json").write_text(
        json.dumps(
            {
                "server_url": "http://test",
                "auth_token": "token123",
                "device_id": "pixel",
            }
        )
    )
    return config_dir


class TestConfigureCommand:
    """Tests for 'syncbridge configure' command."""

    def test_configure_saves_config(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(
            cli,
            [
                "configure",
                "--server",
                "https://sync.example.com/",
                "--token",
                "secret",
                "--device-id",
                "pixel",
                "--set",
                "mirror_capacity=50",
                "--set",
                "debounce_window=0.5",
            ],
        )

        assert result.exit_code == 0
        assert "Configured server https://sync.example.com for device pixel" in result.output
        config = json.loads((config_dir / "config.json").read_text())
        assert config["server_url"] == "https://sync.example.com"
        assert config["auth_token"] == "secret"
        assert config["verify_ssl"] is True
        assert config["engine"] == {"mirror_capacity": 50, "debounce_window": 0.5}

    def test_configure_insecure(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(
            cli, ["configure", "--server", "https://x", "--token", "t", "--insecure"]
        )

        assert result.exit_code == 0
        config = json.loads((config_dir / "config.json").read_text())
        assert config["verify_ssl"] is False
        assert config["device_id"]

    def test_configure_rejects_invalid_engine_option(
        self, runner: CliRunner, config_dir: Path
    ) -> None:
        result = runner.invoke(
            cli,
            ["configure", "--server", "https://x", "--token", "t", "--set", "mirror_capacity=0"],
        )

        assert result.exit_code == 1
        assert "Invalid engine configuration" in result.output
        assert not (config_dir / "config.json").exists()

    def test_configure_rejects_malformed_option(
        self, runner: CliRunner, config_dir: Path
    ) -> None:
        result = runner.invoke(
            cli, ["configure", "--server", "https://x", "--token", "t", "--set", "oops"]
        )

        assert result.exit_code == 1
        assert "KEY=VALUE" in result.output


class TestScheduleCommands:
    """Tests for 'syncbridge schedule' and 'syncbridge cancel'."""

    def test_schedule_requires_config(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["schedule", "+15550100", "hi", "--in", "60"])

        assert result.exit_code == 1
        assert "No server configured" in result.output

    @pytest.mark.parametrize(
        "options",
        [[], ["--in", "60", "--at", "2030-01-01T09:00:00"]],
    )
    def test_schedule_needs_one_time_option(
        self, runner: CliRunner, configured: Path, options: list[str]
    ) -> None:
        result = runner.invoke(cli, ["schedule", "+15550100", "hi", *options])

        assert result.exit_code == 1
        assert "exactly one of --at or --in" in result.output

    def test_schedule_invalid_date(self, runner: CliRunner, configured: Path) -> None:
        result = runner.invoke(cli, ["schedule", "+15550100", "hi", "--at", "tomorrow"])

        assert result.exit_code == 1
        assert "Invalid date" in result.output

    def test_schedule_creates_item(  # type: ignore[no-untyped-def]
        self, runner: CliRunner, configured: Path, httpx_mock
    ) -> None:
        httpx_mock.add_response(
            url="http://test/api/scheduled-messages",
            method="POST",
            status_code=201,
            json={"id": "m7"},
        )

        result = runner.invoke(
            cli, ["schedule", "+15550100", "Happy birthday!", "--in", "60", "--sim-slot", "1"]
        )

        assert result.exit_code == 0
        assert "Scheduled m7 for" in result.output
        body = json.loads(httpx_mock.get_request().content)
        assert body["recipientNumber"] == "+15550100"
        assert body["message"] == "Happy birthday!"
        assert body["simSlot"] == 1

    def test_schedule_server_error(  # type: ignore[no-untyped-def]
        self, runner: CliRunner, configured: Path, httpx_mock
    ) -> None:
        httpx_mock.add_response(
            url="http://test/api/scheduled-messages",
            method="POST",
            status_code=400,
            json={"error": "Scheduled time must be in the future"},
        )

        result = runner.invoke(
            cli, ["schedule", "+15550100", "hi", "--at", "2001-01-01T09:00:00"]
        )

        assert result.exit_code == 1
        assert "Scheduled time must be in the future" in result.output

    def test_cancel(  # type: ignore[no-untyped-def]
        self, runner: CliRunner, configured: Path, httpx_mock
    ) -> None:
        httpx_mock.add_response(
            url="http://test/api/scheduled-messages/m7/status", method="PUT", json={}
        )

        result = runner.invoke(cli, ["cancel", "m7"])

        assert result.exit_code == 0
        assert "Cancelled m7" in result.output
        assert json.loads(httpx_mock.get_request().content)["status"] == "cancelled"


class TestStatusCommand:
    """Tests for 'syncbridge status' command."""

    def test_status_unreachable(  # type: ignore[no-untyped-def]
        self, runner: CliRunner, configured: Path, httpx_mock
    ) -> None:
        httpx_mock.add_response(url="http://test/health", status_code=500)

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Server:    http://test" in result.output
        assert "Health:    unreachable" in result.output
        assert "Scheduled:" not in result.output

    def test_status_with_diagnostics(  # type: ignore[no-untyped-def]
        self, runner: CliRunner, configured: Path, httpx_mock
    ) -> None:
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})
        httpx_mock.add_response(
            url="http://test/api/scheduled-messages?status=pending",
            json={"messages": [{"id": "m1", "scheduledTime": 1, "status": "pending"}]},
        )
        state = LocalState(configured / "state.db")
        diagnostics = DiagnosticsStore(state)
        diagnostics.mark_start("initial-sync")
        diagnostics.mark_failed("initial-sync", "backend down")
        state.close()

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Health:    ok" in result.output
        assert "Scheduled: 1 pending" in result.output
        assert "status:   Sync failed" in result.output
        assert "error:    backend down" in result.output

    def test_status_requires_config(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1


class TestRunCommand:
    """Tests for 'syncbridge run' command."""

    def test_run_requires_config(self, runner: CliRunner, config_dir: Path) -> None:
        result = runner.invoke(cli, ["run"])

        assert result.exit_code == 1
        assert "No server configured" in result.output
