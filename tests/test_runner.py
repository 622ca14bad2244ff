import queue
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from icicle.runner import InstallerFailed, InstallerFinished, InstallerRunner
from icicle.utils.exceptions import IcicleError

COMMAND = ["/usr/bin/env", "pkexec", "nixos-install", "--root", "/tmp/icicle"]


class MockPopen:
    def __init__(self, returncode=0, stdout=""):
        self.returncode = returncode
        self.stdout = iter(stdout.splitlines(keepends=True))
        self.killed = False

    def wait(self):
        return self.returncode

    def kill(self):
        self.killed = True


def undecodable_output():
    """Installer output that breaks off with an invalid UTF-8 byte."""
    yield "copying channel...\n"
    raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")


@pytest.fixture
def inbox():
    return queue.Queue()


@pytest.fixture
def runner(inbox, mock_rich_logger):
    return InstallerRunner(notify=inbox.put, logger_instance=mock_rich_logger)


@patch('subprocess.Popen')
def test_dispatch_reports_finished(mock_popen, runner, inbox, mock_rich_logger):
    """Output lines are reported and success posts InstallerFinished."""
    mock_popen.return_value = MockPopen(0, "copying channel...\ninstallation finished!\n")

    runner.dispatch(COMMAND)
    runner.join(timeout=5)

    assert inbox.get(timeout=5) == InstallerFinished()
    assert mock_popen.call_args.args[0] == COMMAND
    assert mock_popen.call_args.kwargs["stderr"] == subprocess.STDOUT
    mock_rich_logger.progress.assert_any_call("INSTALL", "installation finished!")


@patch('subprocess.Popen')
def test_dispatch_reports_failure(mock_popen, runner, inbox):
    mock_popen.return_value = MockPopen(1, "error: flake does not provide attribute\n")

    runner.dispatch(COMMAND)
    runner.join(timeout=5)

    assert inbox.get(timeout=5) == InstallerFailed(1)


@patch('subprocess.Popen', side_effect=FileNotFoundError())
def test_dispatch_spawn_failure(mock_popen, runner, inbox):
    runner.dispatch(COMMAND)
    runner.join(timeout=5)

    assert inbox.get(timeout=5) == InstallerFailed()


@patch('subprocess.Popen')
def test_dispatch_dry_run(mock_popen, inbox, mock_rich_logger):
    runner = InstallerRunner(notify=inbox.put, logger_instance=mock_rich_logger, dry_run=True)

    runner.dispatch(COMMAND)

    assert inbox.get_nowait() == InstallerFinished()
    mock_popen.assert_not_called()


def test_dispatch_while_running(runner):
    running = MagicMock()
    running.is_alive.return_value = True
    runner._thread = running

    with pytest.raises(IcicleError, match="already running"):
        runner.dispatch(COMMAND)


@patch('subprocess.Popen')
def test_output_is_decoded_leniently(mock_popen, runner, inbox):
    mock_popen.return_value = MockPopen(0, "copying path '/nix/store/�-firefox'\n")

    runner.dispatch(COMMAND)
    runner.join(timeout=5)

    assert mock_popen.call_args.kwargs["errors"] == "replace"
    assert inbox.get(timeout=5) == InstallerFinished()


@patch('subprocess.Popen')
def test_unreadable_output_reports_failure(mock_popen, runner, inbox, mock_rich_logger):
    """A decoding error while reading output still posts exactly one InstallerFailed."""
    process = MockPopen(0)
    process.stdout = undecodable_output()
    mock_popen.return_value = process

    runner.dispatch(COMMAND)
    runner.join(timeout=5)

    assert inbox.get(timeout=5) == InstallerFailed()
    assert inbox.empty()
    assert process.killed
    mock_rich_logger.progress.assert_called_once_with("INSTALL", "copying channel...")
