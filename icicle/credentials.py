# icicle/credentials.py
from icicle.config.models import Credentials
from icicle.utils.exceptions import NoCredentialsError
from icicle.utils.executor import PrivilegedGateway
from icicle.utils.logger import RichAppLogger

PASSWORD_COMMAND = ["chpasswd"]


class CredentialProvisioner:
    """
    Sets the user and root passwords inside the installed system by piping
    "name:password" into chpasswd run through nixos-enter.
    """

    def __init__(self, gateway: PrivilegedGateway, logger_instance: RichAppLogger):
        self.gateway = gateway
        self.logger = logger_instance

    def set_password(self, name: str, password: str, description: str) -> None:
        self.gateway.stream(
            description=description,
            command=PASSWORD_COMMAND,
            input_text=f"{name}:{password}",
            elevate=True,
            chroot=True,
            progress_label="CHPASSWD",
        )

    def provision(self, credentials: Credentials) -> None:
        """
        Sets the user's password, then root's if one was given.

        Raises:
            NoCredentialsError: If the username or password is missing.
        """
        if not credentials.username:
            raise NoCredentialsError("No username found")
        if credentials.password is None:
            raise NoCredentialsError("No password found")

        self.logger.section("Step 5: Set user passwords")
        self.set_password(credentials.username, credentials.password.get_secret_value(),
                          f"Setting password for '{credentials.username}'")

        self.logger.section("Step 6: Set root password if specified")
        if credentials.rootpassword is not None:
            self.set_password("root", credentials.rootpassword.get_secret_value(), "Setting root password")
        else:
            self.logger.info("No root password specified, root login stays disabled")
