# icicle/utils/exceptions.py

class IcicleError(Exception):
    """Base exception for every failure raised by the installer pipeline."""


# --- Privileged command failures ---

class ShellCommandError(IcicleError):
    """Base exception for errors during shell command execution."""
    def __init__(self, command: str, exit_code: int = -1, stdout: str = "", stderr: str = "", message: str = "Shell command failed"):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.message = message
        super().__init__(f"{self.message}: Command='{self.command}', Exit Code={self.exit_code}, "
                         f"Stderr='{self.stderr.strip()}'")

class CommandNotFoundError(ShellCommandError):
    """Exception raised when the command itself is not found."""
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, 127, stdout, stderr, "Command not found")

class CommandTimeoutError(ShellCommandError):
    """Exception raised when a shell command times out."""
    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        super().__init__(command, 124, stdout, stderr, f"Command timed out after {timeout} seconds")

class InvalidCommandError(ShellCommandError):
    """Exception raised for invalid or malformed commands."""
    def __init__(self, command: str, message: str = "Invalid command format"):
        super().__init__(command, -2, "", "", message)

class PermissionDeniedError(ShellCommandError):
    """Exception raised when a shell command encounters a permission denied error."""
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, 126, stdout, stderr, "Permission denied")


# --- Host environment ---

class EnvironmentDetectionError(IcicleError):
    """Raised when the architecture or system version cannot be queried."""


# --- Missing required input ---

class MissingInputError(IcicleError):
    """A value the pipeline cannot continue without was not supplied."""

class NoPartitionSchemeError(MissingInputError):
    def __init__(self, message: str = "No partitions specified"):
        super().__init__(message)

class NoUserError(MissingInputError):
    def __init__(self, message: str = "No user configured"):
        super().__init__(message)

class NoHostnameError(MissingInputError):
    def __init__(self, message: str = "No hostname found"):
        super().__init__(message)

class NoBootDeviceError(MissingInputError):
    def __init__(self, message: str = "Failed to get bootloader disk: no boot device resolved"):
        super().__init__(message)

class NoCredentialsError(MissingInputError):
    """Raised when a password has to be set but username or password is absent."""


# --- Template rendering ---

class TemplateRenderError(IcicleError):
    """Raised when a template file cannot be turned into a configuration file."""
    def __init__(self, template: str, message: str):
        self.template = template
        super().__init__(f"{message} (Template: '{template}')")
