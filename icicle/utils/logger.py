# icicle/utils/logger.py
"""
Logging for the install pipeline.

Two sinks are configured: a detailed log file and a rich console. Pipeline
steps are announced as SECTION records; every external command is wrapped in
RichAppLogger.execution_step(), which shows a spinner while the command runs
and leaves an EXECUTE record with its final status in the log file.
"""
import logging
import os
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.status import Status
from rich.text import Text

from icicle.utils.exceptions import ShellCommandError

SECTION_LEVEL_NUM = 25
EXECUTE_LEVEL_NUM = 26

for _level, _name in ((SECTION_LEVEL_NUM, "SECTION"), (EXECUTE_LEVEL_NUM, "EXECUTE")):
    logging.addLevelName(_level, _name)


class AppLogger(logging.Logger):
    """logging.Logger with section() and execute() convenience methods."""

    def _log_at(self, level: int, msg, args, **kwargs):
        if self.isEnabledFor(level):
            self._log(level, msg, args, **kwargs)

    def section(self, msg, *args, **kwargs):
        self._log_at(SECTION_LEVEL_NUM, msg, args, **kwargs)

    def execute(self, msg, *args, **kwargs):
        self._log_at(EXECUTE_LEVEL_NUM, msg, args, **kwargs)


# Must run before the first getLogger() call for the pipeline's logger name
logging.setLoggerClass(AppLogger)


class FileFormatter(logging.Formatter):
    """Fixed-width columns so the log file lines up."""

    FORMAT = "%(asctime)s - %(levelname)-9s - %(name)-15s - %(filename)-20s:%(lineno)-5d - %(message)s"

    def __init__(self):
        super().__init__(fmt=self.FORMAT)


class RichAppLogger:
    """
    Wraps an AppLogger and the Console it shares with the RichHandler.

    Pipeline code only talks to this wrapper. Records that would be drawn while
    a spinner is active stop the spinner first; debug() never reaches the
    console and leaves it running.
    """

    RUNNING = "[bold green]»[/] [RUNNING] {message}"

    def __init__(self, console: Console, logger: AppLogger):
        self.console = console
        self.logger: AppLogger = logger
        self._current_status: Optional[Status] = None

    def section(self, message: str, *args, **kwargs):
        """Prints a step header and records it at SECTION level."""
        self._stop_current_status()
        self.console.print(Text(f"SECTION: {message}", style="bold yellow"))
        self.logger.section(f"SECTION: {message}", *args, **kwargs)

    @contextmanager
    def execution_step(self, message: str) -> Iterator[Status]:
        """
        Shows a spinner for the duration of the block.

        On exit the spinner is replaced with a [COMPLETED] line. A
        ShellCommandError is reported as [CRITICAL]: it already names the
        command and its stderr. Anything else is [FAILED] and gets a
        traceback on the console. The exception is always re-raised.
        """
        with self.console.status(self.RUNNING.format(message=message), spinner="dots") as status:
            self._current_status = status
            self.logger.execute(f"[RUNNING] {message}")
            try:
                yield status
            except Exception as e:
                command_failure = isinstance(e, ShellCommandError)
                tag = "[CRITICAL]" if command_failure else "[FAILED]"
                self.console.print(f"[bold red]✘[/bold red] {tag} {message}")
                self.logger.execute(f"{tag} {message}")
                self.logger.exception(f"{message} raised {type(e).__name__}")
                if not command_failure:
                    self.console.print_exception(show_locals=False)
                raise
            else:
                self.console.print(f"[green]✔[/green] [COMPLETED] {message}")
                self.logger.execute(f"[COMPLETED] {message}")
            finally:
                self._current_status = None

    def progress(self, source: str, line: str):
        """Reports one output line of a streaming command such as the helper or the installer."""
        if self._current_status is not None:
            self._current_status.update(self.RUNNING.format(message=f"{source}: {line}"))
        else:
            self.console.print(Text(f"{source}: {line}", style="dim"))
        self.logger.debug(f"{source} OUTPUT: {line}")

    def _emit(self, level: int, message, *args, **kwargs):
        self._stop_current_status()
        self.logger.log(level, message, *args, **kwargs)

    def info(self, message, *args, **kwargs):
        self._emit(logging.INFO, message, *args, **kwargs)

    def warning(self, message, *args, **kwargs):
        self._emit(logging.WARNING, message, *args, **kwargs)

    def error(self, message, *args, **kwargs):
        self._emit(logging.ERROR, message, *args, **kwargs)

    def critical(self, message, *args, **kwargs):
        self._emit(logging.CRITICAL, message, *args, **kwargs)

    def debug(self, message, *args, **kwargs):
        self.logger.debug(message, *args, **kwargs)

    def exception(self, message, *args, **kwargs):
        """ERROR record with traceback in the file, rich traceback on the console."""
        self._stop_current_status()
        self.logger.exception(message, *args, **kwargs)
        self.console.print(f"[bold red]Fatal: {message}[/bold red]")
        self.console.print_exception(show_locals=False)

    def _stop_current_status(self):
        if self._current_status is not None:
            self._current_status.stop()
            self._current_status = None


class ExecuteFilter(logging.Filter):
    """Keeps EXECUTE records off the console, execution_step() draws those itself."""

    def filter(self, record):
        return record.levelno != EXECUTE_LEVEL_NUM


def _file_handler(log_directory: str, log_file_name: str, level: int) -> logging.Handler:
    os.makedirs(log_directory, exist_ok=True)
    handler = logging.FileHandler(os.path.join(log_directory, log_file_name), encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(FileFormatter())
    return handler


def _console_handler(console: Console, level: int) -> logging.Handler:
    handler = RichHandler(
        console=console,
        level=level,
        show_time=False,
        show_path=False,
        keywords=[],
    )
    handler.addFilter(ExecuteFilter())
    return handler


def initialize_app_logger(
    app_name: str,
    log_directory: str = "logs",
    log_file_name: str = "icicle.log",
    file_log_level: int = logging.DEBUG,
    console_log_level: int = logging.INFO,
) -> RichAppLogger:
    """
    Configures the named logger with a file handler and a RichHandler on
    stderr and returns the wrapper. Calling it again replaces the handlers.
    """
    logger: AppLogger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    console = Console(file=sys.stderr, soft_wrap=True)
    logger.addHandler(_file_handler(log_directory, log_file_name, file_log_level))
    logger.addHandler(_console_handler(console, console_log_level))

    return RichAppLogger(console, logger)
