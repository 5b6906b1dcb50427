"""Configuration-management bootstrap via knife.

Builds the knife command lines and runs them synchronously. A non-zero
exit is raised as ExternalCommandError; nothing here retries.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class ExternalCommandError(Exception):
    """Raised when an external command fails to run or exits non-zero."""

    def __init__(self, argv: Sequence[str], message: str, returncode: int | None = None) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        super().__init__(message)


class CommandRunner(Protocol):
    """Runs one external command to completion."""

    def run(self, argv: Sequence[str]) -> None: ...


class SubprocessRunner:
    """CommandRunner that execs the command directly (no shell).

    Output streams straight to the terminal. ``timeout`` of None blocks
    until the process exits.
    """

    def __init__(self, timeout: int | None = None) -> None:
        self._timeout = timeout

    def run(self, argv: Sequence[str]) -> None:
        """Run ``argv`` and wait for it.

        Raises:
            ExternalCommandError: If the command is missing, times out, or exits non-zero.
        """
        logger.info("Running command", extra={"command": " ".join(argv)})
        try:
            result = subprocess.run(
                list(argv),
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ExternalCommandError(
                argv, f"Command timed out after {self._timeout}s: {' '.join(argv)}"
            ) from e
        except FileNotFoundError as e:
            raise ExternalCommandError(argv, f"Command not found: {argv[0]}") from e

        if result.returncode != 0:
            raise ExternalCommandError(
                argv,
                f"Command failed with exit code {result.returncode}: {' '.join(argv)}",
                returncode=result.returncode,
            )


def build_bootstrap_command(
    *,
    knife: str,
    address: str,
    identity_file: Path,
    node_name: str,
    runlist: str,
    ssh_user: str,
    knife_solo: bool = False,
    attributes: str | None = None,
) -> list[str]:
    """Render the knife invocation for one host.

    knife-solo bootstraps from a local attributes file; plain knife
    bootstraps against the chef server with sudo and agent forwarding.
    An empty runlist is left off the command line.
    """
    if knife_solo:
        argv = [knife, "solo", "bootstrap", f"{ssh_user}@{address}"]
        if attributes:
            argv.append(attributes)
        argv += ["--identity-file", str(identity_file), "--node-name", node_name]
    else:
        argv = [
            knife,
            "bootstrap",
            address,
            "--identity-file",
            str(identity_file),
            "--forward-agent",
            "--ssh-user",
            ssh_user,
            "--sudo",
            "--node-name",
            node_name,
        ]

    if runlist:
        argv += ["--run-list", runlist]
    return argv
