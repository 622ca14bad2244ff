import shlex
from typing import Dict, List, Optional, Tuple, Union
from unittest.mock import MagicMock

import pytest

from icicle.config.models import FullDiskScheme, InstallRequest, UserConfig
from icicle.config.settings import InstallerSettings
from icicle.utils.exceptions import EnvironmentDetectionError, ShellCommandError
from icicle.utils.logger import RichAppLogger

# --- Test double for the privileged gateway ---


class Call:
    """One recorded gateway invocation."""
    def __init__(self, kind: str, description: str, command: str, elevate: bool = True,
                 chroot: bool = False, input_text: Optional[str] = None):
        self.kind = kind
        self.description = description
        self.command = command
        self.elevate = elevate
        self.chroot = chroot
        self.input_text = input_text

    def __repr__(self):
        return f"Call({self.kind!r}, {self.command!r})"


class RecordingGateway:
    """
    Records every invocation and answers with scripted outputs.

    failures maps a command prefix to the exception raised when a matching
    command runs; exit_codes maps a full command to a non-zero exit status.
    """

    def __init__(self, helper_path: str = "/usr/libexec/icicle-helper"):
        self.helper_path = helper_path
        self.calls: List[Call] = []
        self.written: Dict[str, str] = {}
        self.queries: Dict[str, str] = {
            "uname -m": "x86_64\n",
            "nixos-version": "23.11.20240101.abcdef0 (Tapir)\n",
        }
        self.failures: Dict[str, Exception] = {}
        self.exit_codes: Dict[str, int] = {}

    @staticmethod
    def _key(command: Union[str, list]) -> str:
        return shlex.join(command) if isinstance(command, list) else command

    def _maybe_fail(self, key: str):
        for prefix, exc in self.failures.items():
            if key.startswith(prefix):
                raise exc

    def run(self, description, command, elevate=True, chroot=False, check=True, **kwargs) -> Tuple[int, str, str]:
        key = self._key(command)
        self.calls.append(Call("run", description, key, elevate, chroot))
        self._maybe_fail(key)
        exit_code = self.exit_codes.get(key, 0)
        if check and exit_code != 0:
            raise ShellCommandError(key, exit_code, "", "scripted failure")
        return exit_code, "", "scripted stderr" if exit_code else ""

    def query(self, command) -> str:
        key = self._key(command)
        self.calls.append(Call("query", key, key, elevate=False))
        if key not in self.queries:
            raise EnvironmentDetectionError(f"Failed to query '{key}'")
        return self.queries[key]

    def stream(self, description, command, input_text="", elevate=True, chroot=False,
               progress_label=None, **kwargs) -> Tuple[int, str, str]:
        key = self._key(command)
        self.calls.append(Call("stream", description, key, elevate, chroot, input_text))
        self._maybe_fail(key)
        return 0, "", ""

    def helper_command(self, *args: str) -> List[str]:
        return [self.helper_path, *args]

    def write_file(self, path: str, contents: str) -> None:
        key = f"write-file {path}"
        self.calls.append(Call("write_file", f"Writing {path}", key))
        self._maybe_fail(key)
        self.written[path] = contents

    def commands(self, kind: Optional[str] = None) -> List[str]:
        return [c.command for c in self.calls if kind is None or c.kind == kind]


# --- Fixtures ---

@pytest.fixture
def mock_rich_logger():
    """Provides a fully-mocked RichAppLogger instance for dependency injection."""
    mock_logger = MagicMock(spec=RichAppLogger)

    mock_context_manager = MagicMock()
    mock_context_manager.__enter__.return_value = None
    mock_context_manager.__exit__.return_value = None
    mock_logger.execution_step.return_value = mock_context_manager

    return mock_logger


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def settings(tmp_path):
    """Settings with the template sets rooted in a temporary sysconfdir."""
    (tmp_path / "etc" / "icicle").mkdir(parents=True)
    return InstallerSettings(sysconfdir=str(tmp_path / "etc"), log_directory=str(tmp_path / "logs"))


@pytest.fixture
def template_set(settings):
    """Creates a template set and returns a helper to add files to it."""
    root = settings.template_root / "gnome"
    root.mkdir(parents=True)

    def add(relative: str, text: str):
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    add.root = root
    return add


@pytest.fixture
def user():
    return UserConfig(
        username="alice",
        password="hunter22",
        hostname="icicle-test",
        fullname="Alice Example",
        autologin=False,
    )


@pytest.fixture
def request_factory(user):
    """Builds install requests with sensible defaults."""
    def make(**overrides) -> InstallRequest:
        data = dict(
            template="gnome",
            language="en_US.UTF-8",
            timezone="Europe/Amsterdam",
            keyboard="us",
            partitions=FullDiskScheme(disk="/dev/sda"),
            user=user,
        )
        data.update(overrides)
        return InstallRequest(**data)
    return make
