# icicle/cli.py
import queue
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from icicle import core
from icicle.config.models import InstallRequest
from icicle.config.settings import InstallerSettings
from icicle.orchestrator import BeginInstall, InstallOrchestrator, PipelineOutcome
from icicle.partitions import describe_scheme, resolve_boot_device
from icicle.runner import InstallerRunner
from icicle.utils.exceptions import IcicleError
from icicle.utils.executor import Executor
from icicle.utils.logger import initialize_app_logger

app = typer.Typer(help="Install NixOS from a request file.", no_args_is_help=True)


def _load_settings(path: Optional[Path]) -> InstallerSettings:
    if path is None:
        return InstallerSettings()
    return InstallerSettings.load_settings_from_file(path)


def _load_request(path: Path) -> InstallRequest:
    try:
        return InstallRequest.load_request_from_file(path)
    except (ValueError, ValidationError) as e:
        typer.secho(f"Invalid request file {path}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


@app.command()
def summary(request_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="TOML install request.")):
    """Show what an install request will do."""
    request = _load_request(request_file)
    typer.echo(request.display_summary())
    typer.secho("PARTITIONING", fg=typer.colors.BLUE, bold=True)
    for line in describe_scheme(request.partitions):
        typer.echo(f"  {line}")


@app.command("boot-device")
def boot_device(request_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="TOML install request.")):
    """Print the device a legacy bootloader would be installed to."""
    request = _load_request(request_file)
    try:
        device = resolve_boot_device(request.partitions)
    except IcicleError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if device is None:
        typer.secho("No partition is mounted at '/'", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=1)
    typer.echo(device)


@app.command()
def install(request_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="TOML install request."),
            settings_file: Optional[Path] = typer.Option(None, "--settings", "-s", exists=True, dir_okay=False, help="TOML installer settings."),
            dry_run: bool = typer.Option(False, "--dry-run", help="Log privileged commands instead of running them.")):
    """Partition, configure and install the target system."""
    try:
        settings = _load_settings(settings_file)
    except (ValueError, ValidationError) as e:
        typer.secho(f"Invalid settings file {settings_file}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    request = _load_request(request_file)

    core.app_logger = initialize_app_logger(
        app_name="icicle",
        log_directory=settings.log_directory,
        log_file_name=settings.log_file_name,
    )
    logger = core.app_logger

    typer.echo(request.display_summary())
    if dry_run:
        logger.warning("Running in DRY-RUN mode. Privileged commands are logged, not executed.")
    if not typer.confirm("Proceed with the installation?"):
        raise typer.Exit(code=1)

    outbox: "queue.Queue[PipelineOutcome]" = queue.Queue()
    inbox: queue.Queue = queue.Queue()
    gateway = Executor(logger_instance=logger, settings=settings, dry_run=dry_run)
    runner = InstallerRunner(notify=inbox.put, logger_instance=logger, dry_run=dry_run)
    orchestrator = InstallOrchestrator(gateway, runner, outbox, settings, logger, inbox=inbox)

    orchestrator.start()
    try:
        orchestrator.send(BeginInstall(request))
        outcome = outbox.get()
    finally:
        orchestrator.stop()

    if outcome is PipelineOutcome.FINISHED:
        typer.secho("Installation complete.", fg=typer.colors.GREEN, bold=True)
        return
    typer.secho(f"Installation failed. See {settings.log_directory}/{settings.log_file_name} for details.",
                fg=typer.colors.RED, bold=True, err=True)
    raise typer.Exit(code=1)
