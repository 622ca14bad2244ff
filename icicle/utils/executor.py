# icicle/utils/executor.py

import shlex
import subprocess
import threading
from typing import List, Optional, Protocol, Tuple, Union

from icicle.config.settings import InstallerSettings
from icicle.utils.exceptions import (
    CommandNotFoundError,
    CommandTimeoutError,
    EnvironmentDetectionError,
    InvalidCommandError,
    PermissionDeniedError,
    ShellCommandError,
)
from icicle.utils.logger import RichAppLogger


class PrivilegedGateway(Protocol):
    """The operations the pipeline needs from something that runs commands as root."""

    def run(self, description: str, command: Union[str, list], elevate: bool = True,
            chroot: bool = False, check: bool = True) -> Tuple[int, str, str]:
        ...

    def query(self, command: Union[str, list]) -> str:
        ...

    def stream(self, description: str, command: Union[str, list], input_text: str = "",
               elevate: bool = True, chroot: bool = False,
               progress_label: Optional[str] = None) -> Tuple[int, str, str]:
        ...

    def helper_command(self, *args: str) -> List[str]:
        ...

    def write_file(self, path: str, contents: str) -> None:
        ...


class Executor:
    """
    Runs shell commands for the installer, optionally elevated through the
    configured elevation command (pkexec) and optionally inside the installed
    system via nixos-enter. Logging is injected, never created here.
    """

    def __init__(self,
                 logger_instance: RichAppLogger,
                 settings: Optional[InstallerSettings] = None,
                 dry_run: bool = False):
        """
        Initializes the Executor.
        """
        self.logger = logger_instance
        self.settings = settings or InstallerSettings()

        if not self.settings.elevation_command:
            self.logger.error("Elevation command must not be empty.")
            raise ValueError("Elevation command must not be empty.")

        self._default_timeout = self.settings.command_timeout
        self._chroot_path = self.settings.scratch_root
        self._elevation = list(self.settings.elevation_command)
        self._dry_run = dry_run
        self.logger.debug(f"Executor initialized with elevation: {self._elevation}, chroot_path: {self._chroot_path}, "
                          f"default_timeout: {self._default_timeout}, dry_run: {self._dry_run}")

    def _prepare_command(self, command: Union[str, list], elevate: bool, chroot: bool = False) -> List[str]:
        """
        Normalizes a command to an argv list. chroot=True runs it inside the
        installed system through nixos-enter, elevate=True prefixes the
        elevation command.
        """
        if not command:
            self.logger.error("Refusing to run an empty command.")
            raise InvalidCommandError(str(command), "Empty command.")

        if isinstance(command, str):
            try:
                argv = shlex.split(command)
            except ValueError as e:
                self.logger.error(f"Cannot split command '{command}': {e}")
                raise InvalidCommandError(command, f"Unbalanced quoting in command: {e}")
        elif isinstance(command, list) and all(isinstance(arg, str) for arg in command):
            argv = list(command)
        else:
            self.logger.error(f"Unsupported command {command!r}: expected a string or a list of strings.")
            raise InvalidCommandError(str(command), "Command must be a string or a list of strings.")

        if chroot:
            # nixos-enter -c takes the whole command as a single shell string
            argv = ["nixos-enter", "--root", self._chroot_path, "-c", shlex.join(argv)]
        if elevate:
            argv = self._elevation + argv
        return argv

    def _is_dry_run(self, dryrun: Optional[bool]) -> bool:
        return self._dry_run if dryrun is None else dryrun

    def _skip(self, description: str, argv: List[str]) -> Tuple[int, str, str]:
        self.logger.info(f"DRY RUN: skipped '{description}'")
        self.logger.debug(f"DRY RUN argv: {shlex.join(argv)}")
        return 0, "DRY_RUN_STDOUT", "DRY_RUN_STDERR"

    def helper_command(self, *args: str) -> List[str]:
        """Builds the argv of an icicle-helper subcommand."""
        return [self.settings.helper_path, *args]

    def execute_command(self,
                        command: Union[str, list],
                        capture_output: bool = True,
                        timeout: Optional[float] = None,
                        check: bool = True,
                        cwd: Optional[str] = None
                        ) -> Tuple[int, str, str]:
        """
        Runs an already prepared command with subprocess.run and maps every
        failure onto a ShellCommandError subclass.
        """
        effective_timeout = self._default_timeout if timeout is None else timeout
        argv = self._prepare_command(command, elevate=False) if isinstance(command, str) else command
        printable = shlex.join(argv)
        self.logger.debug(f"exec: {printable} (timeout={effective_timeout}, capture={capture_output}, check={check})")

        try:
            process = subprocess.run(
                argv,
                capture_output=capture_output,
                text=True,
                errors="replace",
                timeout=effective_timeout,
                check=False,
                cwd=cwd
            )
        except FileNotFoundError:
            self.logger.error(f"'{argv[0]}' is not installed or not on PATH.")
            raise CommandNotFoundError(command=printable, stderr=f"{argv[0]}: not found on PATH")
        except PermissionError as e:
            self.logger.error(f"Not allowed to execute '{printable}': {e}")
            raise PermissionDeniedError(command=printable, stderr=str(e))
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"'{printable}' did not finish within {effective_timeout} seconds.")
            stdout = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            stderr = e.stderr.decode() if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise CommandTimeoutError(command=printable, timeout=effective_timeout, stdout=stdout, stderr=stderr)
        except (TypeError, ValueError) as e:
            self.logger.error(f"subprocess rejected the arguments of '{printable}': {e}")
            raise InvalidCommandError(printable, f"Bad arguments: {e}")
        except OSError as e:
            self.logger.error(f"Failed to spawn '{printable}': {e}")
            raise ShellCommandError(printable, -1, "", str(e), "Failed to spawn command")

        stdout = (process.stdout or "") if capture_output else ""
        stderr = (process.stderr or "") if capture_output else ""

        if check and process.returncode != 0:
            self.logger.error(f"'{printable}' exited with {process.returncode}: {stderr.strip()}")
            self._raise_for_exit(printable, process.returncode, stdout, stderr)

        self.logger.debug(f"exec: {printable} -> {process.returncode}")
        return process.returncode, stdout, stderr

    @staticmethod
    def _raise_for_exit(command: str, exit_code: int, stdout: str, stderr: str):
        """Maps a non-zero exit status onto the matching ShellCommandError."""
        lowered = stderr.lower()
        if exit_code == 127 or "command not found" in lowered:
            raise CommandNotFoundError(command=command, stdout=stdout, stderr=stderr)
        if exit_code == 126 or "permission denied" in lowered:
            raise PermissionDeniedError(command=command, stdout=stdout, stderr=stderr)
        raise ShellCommandError(
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            message=f"Command failed with exit code {exit_code}"
        )

    def run(self,
            description: str,
            command: Union[str, list],
            elevate: bool = True,
            chroot: bool = False,
            dryrun: Optional[bool] = None,
            capture_output: bool = True,
            timeout: Optional[float] = None,
            check: bool = True,
            cwd: Optional[str] = None
            ) -> Tuple[int, str, str]:
        """
        Runs a command to completion inside logger.execution_step and returns
        (exit_code, stdout, stderr). With check=True a non-zero exit raises.
        """
        argv = self._prepare_command(command, elevate=elevate, chroot=chroot)
        if self._is_dry_run(dryrun):
            return self._skip(description, argv)

        with self.logger.execution_step(description):
            exit_code, stdout, stderr = self.execute_command(
                command=argv,
                capture_output=capture_output,
                timeout=timeout,
                check=check,
                cwd=cwd
            )

            for name, output in (("stdout", stdout), ("stderr", stderr)):
                if output.strip():
                    self.logger.debug(f"{description} {name}:\n{output.strip()}")

            return exit_code, stdout, stderr

    def query(self, command: Union[str, list]) -> str:
        """
        Runs a read-only, unelevated detection command and returns its stdout.
        Queries run even in dry-run mode.
        """
        prepared = self._prepare_command(command, elevate=False)
        try:
            _, stdout, _ = self.execute_command(prepared, check=True)
        except ShellCommandError as e:
            raise EnvironmentDetectionError(f"Failed to query '{e.command}': {e.message}") from e
        return stdout

    def stream(self,
               description: str,
               command: Union[str, list],
               input_text: str = "",
               elevate: bool = True,
               chroot: bool = False,
               progress_label: Optional[str] = None,
               dryrun: Optional[bool] = None
               ) -> Tuple[int, str, str]:
        """
        Starts a command, writes input_text to its stdin and reports its stdout
        line by line until it exits. stderr is collected concurrently and
        becomes the failure detail on a non-zero exit.
        """
        prepared = self._prepare_command(command, elevate=elevate, chroot=chroot)
        printable = shlex.join(prepared)
        label = progress_label or description

        if self._is_dry_run(dryrun):
            return self._skip(description, prepared)

        with self.logger.execution_step(description):
            self.logger.debug(f"stream: {printable}")
            try:
                process = subprocess.Popen(
                    prepared,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                )
            except FileNotFoundError:
                self.logger.error(f"'{prepared[0]}' is not installed or not on PATH.")
                raise CommandNotFoundError(command=printable, stderr=f"{prepared[0]}: not found on PATH")
            except PermissionError as e:
                raise PermissionDeniedError(command=printable, stderr=str(e))
            except OSError as e:
                raise ShellCommandError(printable, -1, "", str(e), "Failed to spawn command")

            stderr_chunks: List[str] = []
            drain = threading.Thread(target=lambda: stderr_chunks.append(process.stderr.read()), daemon=True)
            drain.start()

            stdout_lines: List[str] = []
            try:
                if input_text:
                    process.stdin.write(input_text)
                process.stdin.close()
                for line in process.stdout:
                    line = line.rstrip("\n")
                    stdout_lines.append(line)
                    self.logger.progress(label, line)
            except (OSError, ValueError) as e:
                process.kill()
                process.wait()
                drain.join()
                self.logger.error(f"I/O error while talking to '{printable}': {e}")
                raise ShellCommandError(printable, -1, "\n".join(stdout_lines), "".join(stderr_chunks),
                                        f"I/O error on command pipes: {e}")

            exit_code = process.wait()
            drain.join()
            stdout = "\n".join(stdout_lines)
            stderr = "".join(stderr_chunks)

            if exit_code != 0:
                self.logger.error(f"{label} failed: {stderr.strip()}")
                self._raise_for_exit(printable, exit_code, stdout, stderr)

            return exit_code, stdout, stderr

    def write_file(self, path: str, contents: str) -> None:
        """Writes a file with elevated rights through the privileged helper."""
        self.run(
            description=f"Writing {path}",
            command=self.helper_command("write-file", "--path", path, "--contents", contents),
        )
