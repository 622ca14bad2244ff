from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from icicle.cli import app
from icicle.orchestrator import BeginInstall, PipelineOutcome

# ======= Execute with: pytest tests/test_cli.py ========

runner = CliRunner()

REQUEST = """
template = "gnome"
language = "en_US.UTF-8"
timezone = "Europe/Amsterdam"
keyboard = "us"

[partitions]
kind = "custom"

[partitions.partitions.p1]
device = "/dev/sda1"
mountpoint = "/"
filesystem = "ext4"

[partitions.partitions.p2]
device = "/dev/sda2"

[user]
username = "alice"
password = "hunter22"
hostname = "icicle-test"
"""


@pytest.fixture
def request_file(tmp_path):
    path = tmp_path / "request.toml"
    path.write_text(REQUEST, encoding="utf-8")
    return path


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(f'log_directory = "{tmp_path / "logs"}"\n', encoding="utf-8")
    return path


def orchestrator_factory(outcome, built):
    """Builds fake orchestrators that answer every request with the given outcome."""
    def build(gateway, installer, outbox, settings, logger, inbox=None):
        orchestrator = MagicMock()
        orchestrator.send.side_effect = lambda message: outbox.put(outcome)
        built.append((orchestrator, gateway, installer))
        return orchestrator
    return build


def test_summary_masks_password(request_file):
    result = runner.invoke(app, ["summary", str(request_file)])

    assert result.exit_code == 0
    assert "hunter22" not in result.output
    assert "********" in result.output
    assert "p1: /dev/sda1 (format as ext4, mount at /)" in result.output
    assert "p2: /dev/sda2 (keep filesystem, not mounted)" in result.output


def test_boot_device_of_custom_scheme(request_file):
    result = runner.invoke(app, ["boot-device", str(request_file)])

    assert result.exit_code == 0
    assert result.output.strip() == "/dev/sda1"


def test_boot_device_without_partitions(tmp_path):
    path = tmp_path / "request.toml"
    path.write_text('template = "gnome"\n', encoding="utf-8")

    result = runner.invoke(app, ["boot-device", str(path)])

    assert result.exit_code == 1
    assert "No partitions specified" in result.output


def test_invalid_request_exits_with_usage_error(tmp_path):
    path = tmp_path / "request.toml"
    path.write_text('template = "gnome"\n[partitions]\nkind = "lvm"\n', encoding="utf-8")

    result = runner.invoke(app, ["summary", str(path)])

    assert result.exit_code == 2
    assert "Invalid request file" in result.output


@patch("icicle.cli.initialize_app_logger")
def test_install_finished(mock_init_logger, request_file, settings_file):
    built = []
    with patch("icicle.cli.InstallOrchestrator", side_effect=orchestrator_factory(PipelineOutcome.FINISHED, built)):
        result = runner.invoke(app, ["install", str(request_file), "--settings", str(settings_file)], input="y\n")

    assert result.exit_code == 0
    assert "Installation complete." in result.output

    orchestrator, gateway, installer = built[0]
    orchestrator.start.assert_called_once()
    orchestrator.stop.assert_called_once()
    message = orchestrator.send.call_args[0][0]
    assert isinstance(message, BeginInstall)
    assert message.request.user.username == "alice"
    assert gateway._dry_run is False


@patch("icicle.cli.initialize_app_logger")
def test_install_failed(mock_init_logger, request_file, settings_file):
    built = []
    with patch("icicle.cli.InstallOrchestrator", side_effect=orchestrator_factory(PipelineOutcome.ERROR, built)):
        result = runner.invoke(app, ["install", str(request_file), "--settings", str(settings_file)], input="y\n")

    assert result.exit_code == 1
    assert "Installation failed." in result.output
    built[0][0].stop.assert_called_once()


@patch("icicle.cli.initialize_app_logger")
def test_install_dry_run_propagates(mock_init_logger, request_file, settings_file):
    built = []
    with patch("icicle.cli.InstallOrchestrator", side_effect=orchestrator_factory(PipelineOutcome.FINISHED, built)):
        result = runner.invoke(app, ["install", str(request_file), "-s", str(settings_file), "--dry-run"], input="y\n")

    assert result.exit_code == 0
    _, gateway, installer = built[0]
    assert gateway._dry_run is True
    assert installer._dry_run is True
    mock_init_logger.return_value.warning.assert_called_once()


@patch("icicle.cli.initialize_app_logger")
def test_install_declined(mock_init_logger, request_file, settings_file):
    with patch("icicle.cli.InstallOrchestrator") as mock_orchestrator:
        result = runner.invoke(app, ["install", str(request_file), "--settings", str(settings_file)], input="n\n")

    assert result.exit_code == 1
    mock_orchestrator.assert_not_called()


def test_install_invalid_settings(request_file, tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('command_timeout = -1\n', encoding="utf-8")

    result = runner.invoke(app, ["install", str(request_file), "--settings", str(path)], input="y\n")

    assert result.exit_code == 2
    assert "Invalid settings file" in result.output
