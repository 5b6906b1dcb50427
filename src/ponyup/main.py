"""Process setup: logging and wiring.

build_runtime() is the only place that turns configuration into live
collaborators. Everything below it receives what it needs explicitly.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import cast

from .config import Config, LogFormat
from .declarations import Declarations
from .hosts import HostLifecycleManager
from .profiles import Profile, load_profile
from .provider import CloudProvider, Ec2Provider, OfflineProvider
from .provisioner import CommandRunner, SubprocessRunner
from .resource_graph import ResourceGraph
from .security_groups import SecurityGroupReconciler
from .spec_loader import load_declarations

# LogRecord attributes that are not "extra" fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with extra fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS and key != "asctime"
        ]
        if extras:
            line = f"{line} [{' '.join(extras)}]"
        return line


def setup_logging(config: Config) -> None:
    """Configure root logging according to ``config``."""
    handler = logging.StreamHandler(sys.stderr)
    if config.log_format == LogFormat.JSON:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(config.log_level.upper())

    # Reduce noise from the AWS SDK
    for noisy in ("boto3", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@dataclass
class Runtime:
    """Live collaborators for one process run."""

    config: Config
    profile: Profile
    graph: ResourceGraph
    namespaces: list[str]


def build_graph(
    config: Config,
    profile: Profile,
    provider: CloudProvider,
    runner: CommandRunner,
) -> ResourceGraph:
    """Wire reconciler, lifecycle manager and graph around ``provider``."""
    hosts = HostLifecycleManager(provider, runner, config, profile.host_defaults())
    return ResourceGraph(SecurityGroupReconciler(provider), hosts)


def build_runtime(config: Config) -> Runtime:
    """Resolve the credential profile, connect to EC2 and load declarations.

    Raises:
        CredentialMissingError: If the profile or its AWS credentials are missing.
        SpecLoadError: If the declarations file is missing or invalid.
    """
    logger = logging.getLogger(__name__)

    profile = load_profile(config.profiles_file, config.profile)
    provider = Ec2Provider.from_profile(profile)
    runner = SubprocessRunner(timeout=config.provision_timeout_seconds)

    graph = build_graph(config, profile, provider, runner)
    namespaces = load_declarations(config.declarations_file, Declarations(graph))
    graph.validate()

    logger.info(
        "Runtime ready",
        extra={
            "profile": profile.name,
            "region": profile.region,
            "declarations": str(config.declarations_file),
            "resources": len(namespaces),
        },
    )
    return Runtime(config=config, profile=profile, graph=graph, namespaces=namespaces)


def load_operations(config: Config) -> ResourceGraph:
    """Load declarations into a graph that is only inspected, never run.

    The credential profile and EC2 are not touched.

    Raises:
        SpecLoadError: If the declarations file is missing or invalid.
    """
    provider = cast(CloudProvider, OfflineProvider())
    graph = build_graph(config, Profile(name=config.profile), provider, SubprocessRunner())
    load_declarations(config.declarations_file, Declarations(graph))
    graph.validate()
    return graph

