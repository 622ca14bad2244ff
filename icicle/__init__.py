# icicle/__init__.py

from .utils.exceptions import IcicleError
from .utils.exceptions import ShellCommandError
from .utils.exceptions import CommandNotFoundError
from .utils.exceptions import CommandTimeoutError

__all__ = [
    "IcicleError",
    "ShellCommandError",
    "CommandNotFoundError",
    "CommandTimeoutError",
]

# Versioning
__version__ = "0.1.0"
