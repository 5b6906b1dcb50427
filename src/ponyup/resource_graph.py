"""Operation registry and execution ordering.

Every declared resource contributes a small namespaced subgraph of named
operations:

    security:<name>:create     converge the group
    security:<name>:destroy    delete the group
    host:<name>:spinup         launch (replace) the instance
    host:<name>:provision      bootstrap it
    host:<name>:create         spinup, then provision
    host:<name>:destroy        terminate the instance

and adds its create/destroy operations as prerequisites of the two
aggregate operations, ``up`` and ``down``.

EXECUTION MODEL:
- run() executes prerequisites depth-first in registration order, then
  the operation's own action
- Each operation runs at most once per run() call
- The first failure propagates and stops everything after it; work
  already done is not rolled back
- No parallelism and no reordering beyond declared prerequisites
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from .hosts import HostLifecycleManager
from .models import HostSpec, SecurityGroupSpec
from .security_groups import SecurityGroupReconciler

logger = logging.getLogger(__name__)

UP = "up"
DOWN = "down"
SECURITY_NAMESPACE = "security"
HOST_NAMESPACE = "host"


class GraphError(Exception):
    """Raised when the operation graph is invalid."""

    pass


class CyclicDependencyError(GraphError):
    """Raised when a prerequisite cycle is detected."""

    pass


class UnknownOperationError(GraphError):
    """Raised when an operation name is not registered."""

    pass


@dataclass
class Operation:
    """A named node in the operation graph."""

    name: str
    description: str = ""
    action: Callable[[], Any] | None = None
    prerequisites: list[str] = field(default_factory=list)


class ResourceGraph:
    """Registry of named operations plus the ``up``/``down`` aggregates.

    Re-registering a resource name replaces its operations (last
    registration wins), but the aggregate prerequisite lists only ever
    grow; a duplicate entry still runs once per run() call.
    """

    def __init__(
        self,
        security_groups: SecurityGroupReconciler,
        hosts: HostLifecycleManager,
    ) -> None:
        self._security_groups = security_groups
        self._hosts = hosts
        self._operations: dict[str, Operation] = {}
        self.add_operation(UP, "Create every declared resource")
        self.add_operation(DOWN, "Destroy every declared resource")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def add_operation(
        self,
        name: str,
        description: str = "",
        action: Callable[[], Any] | None = None,
        prerequisites: Sequence[str] = (),
    ) -> Operation:
        """Register ``name``, replacing any operation already registered under it."""
        operation = Operation(
            name=name,
            description=description,
            action=action,
            prerequisites=list(prerequisites),
        )
        self._operations[name] = operation
        return operation

    def add_prerequisite(self, name: str, prerequisite: str) -> None:
        """Append ``prerequisite`` to the prerequisites of ``name``."""
        self.operation(name).prerequisites.append(prerequisite)

    def register_security_group(self, spec: SecurityGroupSpec) -> str:
        """Register create/destroy operations for a security group.

        Returns:
            The namespace, ``security:<name>``.
        """
        namespace = f"{SECURITY_NAMESPACE}:{spec.name}"
        self.add_operation(
            f"{namespace}:create",
            f"Create {spec.name} security group",
            action=lambda: self._security_groups.create(spec),
        )
        self.add_operation(
            f"{namespace}:destroy",
            f"Delete {spec.name} security group",
            action=lambda: self._security_groups.destroy(spec.name),
        )
        self._add_component(namespace)
        logger.debug("Registered security group", extra={"namespace": namespace})
        return namespace

    def register_host(self, spec: HostSpec) -> str:
        """Register spinup/provision/create/destroy operations for a host.

        Returns:
            The namespace, ``host:<name>``.
        """
        namespace = f"{HOST_NAMESPACE}:{spec.name}"
        self.add_operation(
            f"{namespace}:spinup",
            f"Launch {spec.name} in the cloud",
            action=lambda: self._hosts.spinup(spec),
        )
        self.add_operation(
            f"{namespace}:provision",
            f"Provision {spec.name} with chef",
            action=lambda: self._hosts.provision(spec),
        )
        self.add_operation(
            f"{namespace}:create",
            f"Create {spec.name} host",
            prerequisites=[f"{namespace}:spinup", f"{namespace}:provision"],
        )
        self.add_operation(
            f"{namespace}:destroy",
            f"Terminate {spec.name} host",
            action=lambda: self._hosts.destroy(spec),
        )
        self._add_component(namespace)
        logger.debug("Registered host", extra={"namespace": namespace})
        return namespace

    def _add_component(self, namespace: str) -> None:
        self.add_prerequisite(UP, f"{namespace}:create")
        self.add_prerequisite(DOWN, f"{namespace}:destroy")

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def operation(self, name: str) -> Operation:
        """Get a registered operation.

        Raises:
            UnknownOperationError: If ``name`` is not registered.
        """
        try:
            return self._operations[name]
        except KeyError:
            raise UnknownOperationError(
                f"Unknown operation '{name}'. Run 'ponyup list' to see available operations."
            ) from None

    def names(self) -> list[str]:
        """All registered operation names, in registration order."""
        return list(self._operations)

    def describe(self) -> Iterator[tuple[str, str]]:
        """Yield ``(name, description)`` for every registered operation."""
        for operation in self._operations.values():
            yield operation.name, operation.description

    def validate(self) -> None:
        """Check that every prerequisite exists and there are no cycles.

        Raises:
            UnknownOperationError: If a prerequisite is not registered.
            CyclicDependencyError: If a cycle is detected.
        """
        for operation in self._operations.values():
            for prerequisite in operation.prerequisites:
                if prerequisite not in self._operations:
                    raise UnknownOperationError(
                        f"Operation '{operation.name}' depends on unknown operation "
                        f"'{prerequisite}'"
                    )

        # Kahn's algorithm for cycle detection
        in_degree: dict[str, int] = {name: 0 for name in self._operations}
        for operation in self._operations.values():
            for prerequisite in set(operation.prerequisites):
                in_degree[prerequisite] += 1

        queue = [name for name, degree in in_degree.items() if degree == 0]
        processed = 0

        while queue:
            current = queue.pop(0)
            processed += 1

            for prerequisite in set(self._operations[current].prerequisites):
                in_degree[prerequisite] -= 1
                if in_degree[prerequisite] == 0:
                    queue.append(prerequisite)

        if processed != len(self._operations):
            cycle_nodes = [name for name, degree in in_degree.items() if degree > 0]
            raise CyclicDependencyError(f"Circular dependency detected involving: {cycle_nodes}")

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run(self, *names: str) -> list[str]:
        """Execute the named operations and their prerequisites.

        Operations shared between targets run once.

        Returns:
            Names of the operations executed, in execution order.

        Raises:
            UnknownOperationError: If a name is not registered.
            CyclicDependencyError: If a prerequisite cycle is reached.
        """
        executed: list[str] = []
        done: set[str] = set()
        for name in names:
            self._invoke(name, executed, done, [])
        return executed

    def _invoke(self, name: str, executed: list[str], done: set[str], stack: list[str]) -> None:
        if name in done:
            return
        if name in stack:
            cycle = " -> ".join([*stack[stack.index(name) :], name])
            raise CyclicDependencyError(f"Circular dependency detected: {cycle}")

        operation = self.operation(name)
        stack.append(name)
        for prerequisite in operation.prerequisites:
            self._invoke(prerequisite, executed, done, stack)
        stack.pop()

        if operation.action is not None:
            logger.info("Running operation", extra={"operation": name})
            operation.action()

        done.add(name)
        executed.append(name)
