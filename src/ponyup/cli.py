"""ponyup command line.

Usage:
    ponyup up                          # Create every declared resource
    ponyup down                        # Destroy every declared resource
    ponyup run security:web:create     # Run specific operations
    ponyup list                        # Show available operations
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import click
from botocore.exceptions import BotoCoreError, ClientError

from .config import Config, ConfigurationError
from .hosts import HostLifecycleError
from .main import Runtime, build_runtime, load_operations, setup_logging
from .profiles import CredentialMissingError
from .provisioner import ExternalCommandError
from .resource_graph import DOWN, UP, GraphError
from .security_groups import PeerGroupNotFoundError
from .spec_loader import SpecLoadError

logger = logging.getLogger(__name__)

T = TypeVar("T")

VERSION = "0.1.0"

# Failures that abort a run with a one-line message instead of a traceback
OPERATION_ERRORS = (
    PeerGroupNotFoundError,
    HostLifecycleError,
    ExternalCommandError,
    GraphError,
    ClientError,
    BotoCoreError,
)


@dataclasses.dataclass
class CliOptions:
    """Global options shared by every command."""

    declarations_file: Path | None = None
    profile: str | None = None


def load_config(options: CliOptions) -> Config:
    """Read configuration from the environment and apply command-line overrides."""
    config = Config.from_env()
    overrides: dict[str, object] = {}
    if options.declarations_file is not None:
        overrides["declarations_file"] = options.declarations_file
    if options.profile:
        overrides["profile"] = options.profile
    if overrides:
        config = dataclasses.replace(config, **overrides)  # type: ignore[arg-type]
    return config


def start(options: CliOptions, build: Callable[[Config], T]) -> T:
    """Configuration and logging, then ``build``, or a clean exit.

    Raises:
        click.ClickException: On any startup failure.
    """
    try:
        config = load_config(options)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(config)

    try:
        return build(config)
    except CredentialMissingError as e:
        logger.error("Credential profile unavailable", extra={"profile": config.profile})
        raise click.ClickException(str(e)) from e
    except SpecLoadError as e:
        logger.error(
            "Declarations could not be loaded",
            extra={"declarations": str(config.declarations_file)},
        )
        raise click.ClickException(str(e)) from e
    except GraphError as e:
        raise click.ClickException(str(e)) from e


def load_runtime(options: CliOptions) -> Runtime:
    """Credentials, EC2 and declarations for commands that run operations."""
    return start(options, build_runtime)


def execute(runtime: Runtime, names: tuple[str, ...]) -> None:
    """Run ``names`` against the graph; the first failure ends the run."""
    try:
        executed = runtime.graph.run(*names)
    except OPERATION_ERRORS as e:
        logger.error(
            "Operation failed",
            extra={"targets": list(names), "error_type": type(e).__name__},
        )
        raise click.ClickException(str(e)) from e

    logger.info("Run complete", extra={"targets": list(names), "executed": len(executed)})


@click.group()
@click.version_option(version=VERSION, prog_name="ponyup")
@click.option(
    "--file",
    "-f",
    "declarations_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Declarations file (default: $PONYUP_FILE or Ponyfile.yaml)",
)
@click.option(
    "--profile",
    "-p",
    help="Credential profile (default: $PONYUP_PROFILE or staging)",
)
@click.pass_context
def cli(ctx: click.Context, declarations_file: Path | None, profile: str | None) -> None:
    """Bring declared security groups and hosts up, or tear them down.

    \b
    Quick Start:
        ponyup list        # Show every operation in the declarations
        ponyup up          # Create everything, in declaration order
        ponyup down        # Destroy everything
    """
    ctx.obj = CliOptions(declarations_file=declarations_file, profile=profile)


@cli.command()
@click.pass_obj
def up(options: CliOptions) -> None:
    """Create every declared resource."""
    execute(load_runtime(options), (UP,))


@cli.command()
@click.pass_obj
def down(options: CliOptions) -> None:
    """Destroy every declared resource."""
    execute(load_runtime(options), (DOWN,))


@cli.command("run")
@click.argument("targets", nargs=-1, required=True)
@click.pass_obj
def run_targets(options: CliOptions, targets: tuple[str, ...]) -> None:
    """Run specific operations, e.g. host:app:spinup.

    \b
    Examples:
        ponyup run security:web:create
        ponyup run host:app:spinup host:app:provision
    """
    execute(load_runtime(options), targets)


@cli.command("list")
@click.pass_obj
def list_operations(options: CliOptions) -> None:
    """List every available operation. Needs no AWS credentials."""
    graph = start(options, load_operations)
    rows = list(graph.describe())
    width = max((len(name) for name, _ in rows), default=0)
    for name, description in rows:
        click.echo(f"{name.ljust(width)}  # {description}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
