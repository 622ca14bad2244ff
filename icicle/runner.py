# icicle/runner.py
import shlex
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from icicle.utils.exceptions import IcicleError
from icicle.utils.logger import RichAppLogger


@dataclass(frozen=True)
class InstallerFinished:
    """The installer command exited successfully."""


@dataclass(frozen=True)
class InstallerFailed:
    """The installer command could not be started or exited non-zero."""
    exit_code: int = -1


class InstallerChannel(Protocol):
    """Hands the installer command to whatever runs it out of band."""

    def dispatch(self, command: List[str]) -> None:
        ...


class InstallerRunner:
    """
    Runs the installer command on a background thread, reports its output
    line by line and posts InstallerFinished/InstallerFailed to notify.
    """

    def __init__(self, notify: Callable[[object], None], logger_instance: RichAppLogger, dry_run: bool = False):
        self._notify = notify
        self.logger = logger_instance
        self._dry_run = dry_run
        self._thread: Optional[threading.Thread] = None

    def dispatch(self, command: List[str]) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise IcicleError("An installer command is already running")
        self.logger.info(f"Dispatching installer: {shlex.join(command)}")
        if self._dry_run:
            self.logger.info("DRY RUN: Installer skipped")
            self._notify(InstallerFinished())
            return
        self._thread = threading.Thread(target=self._run, args=(list(command),), name="icicle-installer", daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self, command: List[str]) -> None:
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            self.logger.error(f"Failed to start installer '{shlex.join(command)}': {e}")
            self._notify(InstallerFailed())
            return

        try:
            for line in process.stdout:
                self.logger.progress("INSTALL", line.rstrip("\n"))
            exit_code = process.wait()
        except (OSError, ValueError) as e:
            process.kill()
            process.wait()
            self.logger.error(f"Lost the output of installer '{shlex.join(command)}': {e}")
            self._notify(InstallerFailed())
            return

        if exit_code == 0:
            self.logger.info("Installer finished")
            self._notify(InstallerFinished())
        else:
            self.logger.error(f"Installer exited with code {exit_code}")
            self._notify(InstallerFailed(exit_code))
