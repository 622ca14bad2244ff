# icicle/orchestrator.py
"""
The install pipeline.

One InstallOrchestrator handles one install request at a time on a single
worker thread. Every step up to the installer hand-off blocks on its command.
The installer itself runs out of band: the orchestrator dispatches it through
an InstallerChannel and resumes only when an InstallerFinished (or
InstallerFailed) message arrives in its inbox. Each run emits exactly one
PipelineOutcome to the outbox.
"""
import json
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from icicle.config.models import ConfigType, Credentials, InstallRequest
from icicle.config.settings import InstallerSettings
from icicle.credentials import CredentialProvisioner
from icicle.partitions import resolve_boot_device
from icicle.render import ConfigRenderer
from icicle.runner import InstallerChannel, InstallerFailed, InstallerFinished
from icicle.utils.exceptions import (
    IcicleError,
    NoHostnameError,
    NoPartitionSchemeError,
    NoUserError,
    ShellCommandError,
)
from icicle.utils.executor import PrivilegedGateway
from icicle.utils.logger import RichAppLogger


class InstallState(str, Enum):
    IDLE = "idle"
    CLEAR_WORKSPACE = "clear_workspace"
    APPLY_PARTITIONS = "apply_partitions"
    GENERATE_BASE_CONFIG = "generate_base_config"
    RELOCATE_FOR_STRUCTURED_LAYOUT = "relocate_for_structured_layout"
    RENDER_CONFIG = "render_config"
    INVOKE_INSTALLER = "invoke_installer"
    AWAIT_INSTALLER_COMPLETION = "await_installer_completion"
    PROVISION_CREDENTIALS = "provision_credentials"
    FINISHED = "finished"
    FAILED = "failed"


class PipelineOutcome(str, Enum):
    ERROR = "error"
    FINISHED = "finished"


@dataclass(frozen=True)
class BeginInstall:
    request: InstallRequest


class _Shutdown:
    pass


class InstallOrchestrator:
    """
    Drives partitioning, configuration generation, the installer and
    password provisioning in strict order.
    """

    def __init__(self,
                 gateway: PrivilegedGateway,
                 installer: InstallerChannel,
                 outbox: "queue.Queue[PipelineOutcome]",
                 settings: InstallerSettings,
                 logger_instance: RichAppLogger,
                 renderer: Optional[ConfigRenderer] = None,
                 provisioner: Optional[CredentialProvisioner] = None,
                 inbox: Optional[queue.Queue] = None):
        self.gateway = gateway
        self.installer = installer
        self.outbox = outbox
        self.settings = settings
        self.logger = logger_instance
        self.renderer = renderer or ConfigRenderer(gateway, settings, logger_instance)
        self.provisioner = provisioner or CredentialProvisioner(gateway, logger_instance)
        self.inbox: queue.Queue = inbox if inbox is not None else queue.Queue()

        self.state = InstallState.IDLE
        self._credentials: Optional[Credentials] = None
        self._worker: Optional[threading.Thread] = None

    # --- Worker lifecycle ---

    def start(self) -> None:
        """Starts the worker thread that drains the inbox."""
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._loop, name="icicle-orchestrator", daemon=True)
        self._worker.start()

    def send(self, message: object) -> None:
        self.inbox.put(message)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stops the worker and drops any retained credentials."""
        if self._worker is not None:
            self.inbox.put(_Shutdown())
            self._worker.join(timeout)
            self._worker = None
        self._credentials = None

    def _loop(self) -> None:
        while True:
            message = self.inbox.get()
            if isinstance(message, _Shutdown):
                break
            try:
                self.handle(message)
            except Exception as e:
                self.logger.exception(f"Unexpected error while handling {type(message).__name__}")
                self._fail(str(e))

    # --- Message handling ---

    def handle(self, message: object) -> None:
        """Processes a single inbound message synchronously."""
        if isinstance(message, BeginInstall):
            self._begin(message.request)
        elif isinstance(message, InstallerFinished):
            self._finish()
        elif isinstance(message, InstallerFailed):
            if self.state is not InstallState.AWAIT_INSTALLER_COMPLETION:
                self.logger.warning(f"Ignoring installer failure while {self.state.value}")
                return
            self._fail(f"Installer exited with code {message.exit_code}")
        else:
            self.logger.warning(f"Ignoring unknown message: {message!r}")

    def _transition(self, state: InstallState) -> None:
        self.logger.debug(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, reason: str) -> None:
        self.logger.error(f"Installation failed while {self.state.value}: {reason}")
        self._credentials = None
        self._transition(InstallState.FAILED)
        self.outbox.put(PipelineOutcome.ERROR)

    def _begin(self, request: InstallRequest) -> None:
        if self.state not in (InstallState.IDLE, InstallState.FINISHED, InstallState.FAILED):
            self.logger.error(f"Install request rejected, a run is already {self.state.value}")
            return

        self._credentials = None
        step = "detect architecture"
        try:
            arch = self.renderer.detect_architecture()

            step = "clear workspace"
            self._transition(InstallState.CLEAR_WORKSPACE)
            self.clear_workspace()

            step = "partition"
            self._transition(InstallState.APPLY_PARTITIONS)
            self.apply_partitions(request)

            step = "generate base config"
            self._transition(InstallState.GENERATE_BASE_CONFIG)
            self.generate_base_config()

            if request.config_type is ConfigType.STRUCTURED:
                step = "relocate hardware configuration"
                self._transition(InstallState.RELOCATE_FOR_STRUCTURED_LAYOUT)
                self.relocate_for_structured_layout(arch, request.hostname)

            step = "make config"
            self._transition(InstallState.RENDER_CONFIG)
            self.render_config(request, arch)

            step = "start installer"
            self._transition(InstallState.INVOKE_INSTALLER)
            self.invoke_installer(request)
        except IcicleError as e:
            self._fail(f"Failed to {step}: {e}")

    def _finish(self) -> None:
        if self.state is not InstallState.AWAIT_INSTALLER_COMPLETION:
            self.logger.warning(f"Ignoring installer completion while {self.state.value}")
            return

        credentials, self._credentials = self._credentials, None
        self._transition(InstallState.PROVISION_CREDENTIALS)
        try:
            self.provisioner.provision(credentials or Credentials())
        except IcicleError as e:
            self._fail(f"Failed to set passwords: {e}")
            return

        self._transition(InstallState.FINISHED)
        self.logger.info("Installation finished")
        self.outbox.put(PipelineOutcome.FINISHED)

    # --- Steps ---

    def clear_workspace(self) -> None:
        """Unmounts and removes the scratch root left over by an earlier run."""
        self.logger.section(f"Step 0: Clear {self.settings.scratch_root}")
        scratch = self.settings.scratch_root
        exit_code, _, stderr = self.gateway.run(f"Unmounting {scratch}", ["umount", "-R", scratch], check=False)
        if exit_code != 0:
            # Nothing mounted from a previous run
            self.logger.debug(f"umount -R {scratch} exited with {exit_code}: {stderr.strip()}")
        self.gateway.run(f"Removing {scratch}", ["rm", "-rf", scratch])

    def apply_partitions(self, request: InstallRequest) -> None:
        self.logger.section("Step 1: Setup and mount partitions")
        if request.partitions is None:
            raise NoPartitionSchemeError()
        payload = json.dumps(request.partitions.to_payload())
        self.logger.debug(f"Executing partition with json: {payload}")
        try:
            self.gateway.stream(
                description="Partitioning and mounting disks",
                command=self.gateway.helper_command("partition"),
                input_text=payload,
                progress_label="PARTITION",
            )
        except ShellCommandError as e:
            self.logger.error(f"Partitioning failed: {e.stderr.strip()}")
            raise

    def generate_base_config(self) -> None:
        self.logger.section("Step 2: Generate base config")
        self.gateway.run("Generating hardware configuration",
                         ["nixos-generate-config", "--root", self.settings.scratch_root])

    def relocate_for_structured_layout(self, arch: str, hostname: str) -> None:
        """Moves hardware-configuration.nix under systems/<arch>-linux/<hostname>/."""
        config_dir = self.settings.config_dir
        system_dir = f"{config_dir}/systems/{arch}-linux/{hostname}"
        self.gateway.run(f"Creating {system_dir}", ["mkdir", "-p", system_dir])
        self.gateway.run("Moving hardware configuration",
                         ["mv", f"{config_dir}/hardware-configuration.nix", f"{system_dir}/hardware.nix"])
        self.gateway.run("Removing generated configuration.nix", ["rm", f"{config_dir}/configuration.nix"])

    def render_config(self, request: InstallRequest, arch: str) -> List[str]:
        self.logger.section("Step 3: Make configuration")
        boot_device = resolve_boot_device(request.partitions)
        return self.renderer.render(request, boot_device, arch=arch)

    def installer_command(self, hostname: str) -> List[str]:
        scratch = self.settings.scratch_root
        return [
            "/usr/bin/env",
            *self.settings.elevation_command,
            "nixos-install",
            "--root",
            scratch,
            "--no-root-passwd",
            "--no-channel-copy",
            "--flake",
            f"{self.settings.config_dir}#{hostname}",
        ]

    def invoke_installer(self, request: InstallRequest) -> None:
        """Hands the installer off and returns without waiting for it."""
        self.logger.section("Step 4: Install NixOS")
        if request.user is None:
            raise NoUserError()
        if not request.user.hostname:
            raise NoHostnameError()

        self._credentials = Credentials.from_user(request.user)
        self._transition(InstallState.AWAIT_INSTALLER_COMPLETION)
        self.installer.dispatch(self.installer_command(request.user.hostname))
