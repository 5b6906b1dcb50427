"""Host lifecycle: launch, bootstrap, terminate.

Per host name the lifecycle is

    absent --spinup--> running --provision--> provisioned
    any state --destroy--> absent

spinup always REPLACES: a running instance with the same name is
terminated first, never updated in place. create is spinup followed by
provision, and provision only starts once spinup's readiness wait has
returned.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .config import Config
from .models import HostSpec
from .profiles import HostDefaults
from .provider import CloudProvider, Instance
from .provisioner import CommandRunner, build_bootstrap_command

logger = logging.getLogger(__name__)


class ProvisionOutcome(str, Enum):
    """Result of a provision call."""

    SKIPPED = "skipped"  # Empty runlist and no knife-solo: nothing to run
    BOOTSTRAPPED = "bootstrapped"  # The bootstrap command ran and exited 0


class HostLifecycleError(Exception):
    """Base class for host lifecycle failures."""

    pass


class ReadinessTimeoutError(HostLifecycleError):
    """Raised when a new instance does not become ready in time."""

    pass


class HostSettingError(HostLifecycleError):
    """Raised when a launch or bootstrap setting cannot be resolved."""

    pass


class InstanceNotFoundError(HostLifecycleError):
    """Raised when provisioning finds no running instance for the host."""

    pass


@dataclass(frozen=True)
class ReadinessPolicy:
    """How long and how often to poll a new instance."""

    timeout_seconds: float
    poll_interval_seconds: float

    @classmethod
    def from_config(cls, config: Config) -> ReadinessPolicy:
        return cls(
            timeout_seconds=config.ready_timeout_seconds,
            poll_interval_seconds=config.ready_poll_interval_seconds,
        )


class HostLifecycleManager:
    """Drives one host at a time through spinup, provision and destroy.

    Every call re-reads instance state from the provider; nothing is
    cached between calls.
    """

    def __init__(
        self,
        provider: CloudProvider,
        runner: CommandRunner,
        config: Config,
        defaults: HostDefaults,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._runner = runner
        self._config = config
        self._defaults = defaults
        self._readiness = ReadinessPolicy.from_config(config)
        self._sleep = sleep
        self._clock = clock

    def create(self, spec: HostSpec) -> ProvisionOutcome:
        """Launch a fresh instance for ``spec`` and bootstrap it."""
        self.spinup(spec)
        return self.provision(spec)

    def spinup(self, spec: HostSpec) -> Instance:
        """Replace any running instance named ``spec.name`` with a new one.

        Launch settings are resolved first, so a host that cannot be
        launched keeps its running instance. Blocks until the new instance
        reports ready.

        Raises:
            HostSettingError: If no image or size is declared or defaulted.
            ReadinessTimeoutError: If the instance is not ready within the timeout.
        """
        key_name = spec.options.key_name or self._defaults.key_name
        size = spec.options.size or self._defaults.size
        image_id = spec.options.image_id or self._defaults.image_id

        if not size or not image_id:
            missing = " or ".join(
                label for label, value in (("size", size), ("image_id", image_id)) if not value
            )
            raise HostSettingError(
                f"Host '{spec.name}' has no {missing}; "
                "declare it in the host options or the credential profile"
            )

        existing = self._provider.find_running_instance(spec.name)
        if existing is not None:
            logger.info(
                "Replacing running instance",
                extra={"host": spec.name, "instance_id": existing.instance_id},
            )
            self._provider.terminate_instance(existing)

        instance = self._provider.create_instance(
            name=spec.name,
            security_groups=spec.security_groups,
            key_name=key_name,
            size=size,
            image_id=image_id,
        )
        return self._wait_until_ready(spec.name, instance)

    def provision(self, spec: HostSpec) -> ProvisionOutcome:
        """Bootstrap the running instance for ``spec`` with knife.

        A no-op when the runlist is empty and knife-solo is off.

        Raises:
            InstanceNotFoundError: If no running instance carries the host's name.
            HostSettingError: If no key name is available for the identity file.
            ExternalCommandError: If the bootstrap command fails.
        """
        if not spec.needs_provisioning:
            logger.info("Nothing to provision", extra={"host": spec.name})
            return ProvisionOutcome.SKIPPED

        instance = self._provider.find_running_instance(spec.name)
        if instance is None:
            raise InstanceNotFoundError(f"No running instance named '{spec.name}' to provision")

        key_name = spec.options.key_name or self._defaults.key_name
        if not key_name:
            raise HostSettingError(
                f"Host '{spec.name}' has no key_name; cannot locate an identity file"
            )

        address = instance.address
        if not address:
            raise HostLifecycleError(
                f"Instance {instance.instance_id} for '{spec.name}' has no public address"
            )

        argv = build_bootstrap_command(
            knife=self._config.knife_command,
            address=address,
            identity_file=self._config.identity_file(key_name),
            node_name=spec.name,
            runlist=spec.runlist,
            ssh_user=self._config.ssh_user,
            knife_solo=spec.options.knife_solo,
            attributes=spec.options.attributes,
        )
        logger.info(
            "Bootstrapping host",
            extra={
                "host": spec.name,
                "address": address,
                "knife_solo": spec.options.knife_solo,
                "runlist": spec.runlist,
            },
        )
        self._runner.run(argv)
        return ProvisionOutcome.BOOTSTRAPPED

    def destroy(self, spec: HostSpec) -> bool:
        """Terminate the running instance for ``spec``, if there is one.

        Returns:
            True if an instance was terminated, False if none was running.
        """
        instance = self._provider.find_running_instance(spec.name)
        if instance is None:
            logger.info("No running instance, nothing to destroy", extra={"host": spec.name})
            return False
        self._provider.terminate_instance(instance)
        return True

    def _wait_until_ready(self, name: str, instance: Instance) -> Instance:
        deadline = self._clock() + self._readiness.timeout_seconds
        while True:
            instance = self._provider.reload_instance(instance)
            if instance.ready:
                logger.info(
                    "Instance ready",
                    extra={"host": name, "instance_id": instance.instance_id},
                )
                return instance
            if self._clock() >= deadline:
                raise ReadinessTimeoutError(
                    f"Instance {instance.instance_id} for '{name}' not ready after "
                    f"{self._readiness.timeout_seconds}s (state: {instance.state})"
                )
            logger.debug(
                "Waiting for instance",
                extra={"host": name, "instance_id": instance.instance_id, "state": instance.state},
            )
            self._sleep(self._readiness.poll_interval_seconds)
