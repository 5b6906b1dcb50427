"""Tests for the operation graph: registration, ordering and execution."""

from __future__ import annotations

from typing import Any

import pytest
from aws_mock import MockCloudProvider, MockEc2State, RecordingRunner

from ponyup.models import HostSpec, SecurityGroupSpec
from ponyup.resource_graph import (
    DOWN,
    UP,
    CyclicDependencyError,
    ResourceGraph,
    UnknownOperationError,
)


def recorder(log: list[str], name: str, fail: bool = False) -> Any:
    def action() -> None:
        log.append(name)
        if fail:
            raise RuntimeError(f"{name} failed")

    return action


class TestRegistration:
    """Tests for resource registration."""

    def test_aggregates_exist(self, graph: ResourceGraph) -> None:
        assert graph.names() == [UP, DOWN]
        assert graph.operation(UP).prerequisites == []

    def test_security_group_operations(self, graph: ResourceGraph) -> None:
        namespace = graph.register_security_group(SecurityGroupSpec(name="web"))

        assert namespace == "security:web"
        assert dict(graph.describe())["security:web:create"] == "Create web security group"
        assert dict(graph.describe())["security:web:destroy"] == "Delete web security group"
        assert graph.operation(UP).prerequisites == ["security:web:create"]
        assert graph.operation(DOWN).prerequisites == ["security:web:destroy"]

    def test_host_operations(self, graph: ResourceGraph) -> None:
        namespace = graph.register_host(HostSpec(name="app", security_groups=["web"]))

        assert namespace == "host:app"
        assert graph.names()[2:] == [
            "host:app:spinup",
            "host:app:provision",
            "host:app:create",
            "host:app:destroy",
        ]
        create = graph.operation("host:app:create")
        assert create.action is None
        assert create.prerequisites == ["host:app:spinup", "host:app:provision"]

    def test_aggregates_follow_declaration_order(self, graph: ResourceGraph) -> None:
        graph.register_security_group(SecurityGroupSpec(name="web"))
        graph.register_host(HostSpec(name="app", security_groups=["web"]))
        graph.register_security_group(SecurityGroupSpec(name="internal"))

        assert graph.operation(UP).prerequisites == [
            "security:web:create",
            "host:app:create",
            "security:internal:create",
        ]
        assert graph.operation(DOWN).prerequisites == [
            "security:web:destroy",
            "host:app:destroy",
            "security:internal:destroy",
        ]

    def test_reregistration_last_wins(
        self, graph: ResourceGraph, state: MockEc2State
    ) -> None:
        """Test that declaring a name twice keeps the second definition only."""
        graph.register_security_group(SecurityGroupSpec(name="web", public_ports=[80]))
        graph.register_security_group(SecurityGroupSpec(name="web", public_ports=[443]))

        assert graph.operation(UP).prerequisites == ["security:web:create"] * 2

        executed = graph.run(UP)

        assert executed == ["security:web:create", UP]
        assert {str(p) for p in state.public_ports("web")} == {"443-443"}

    def test_unknown_operation(self, graph: ResourceGraph) -> None:
        with pytest.raises(UnknownOperationError, match="ponyup list"):
            graph.operation("host:nope:create")


class TestRun:
    """Tests for ResourceGraph.run."""

    def test_prerequisites_first(self, graph: ResourceGraph) -> None:
        log: list[str] = []
        graph.add_operation("a", action=recorder(log, "a"))
        graph.add_operation("b", action=recorder(log, "b"), prerequisites=["a"])
        graph.add_operation("c", action=recorder(log, "c"), prerequisites=["b", "a"])

        executed = graph.run("c")

        assert log == ["a", "b", "c"]
        assert executed == ["a", "b", "c"]

    def test_shared_prerequisite_runs_once(self, graph: ResourceGraph) -> None:
        """Test that an operation reached twice in one run executes once."""
        log: list[str] = []
        graph.add_operation("base", action=recorder(log, "base"))
        graph.add_operation("x", action=recorder(log, "x"), prerequisites=["base"])
        graph.add_operation("y", action=recorder(log, "y"), prerequisites=["base"])

        graph.run("x", "y")

        assert log == ["base", "x", "y"]

    def test_each_run_starts_fresh(self, graph: ResourceGraph) -> None:
        log: list[str] = []
        graph.add_operation("a", action=recorder(log, "a"))

        graph.run("a")
        graph.run("a")

        assert log == ["a", "a"]

    def test_failure_stops_run(self, graph: ResourceGraph) -> None:
        """Test that the first failure propagates and nothing after it runs."""
        log: list[str] = []
        graph.add_operation("ok", action=recorder(log, "ok"))
        graph.add_operation("bad", action=recorder(log, "bad", fail=True))
        graph.add_operation("later", action=recorder(log, "later"))
        graph.add_operation("all", prerequisites=["ok", "bad", "later"])

        with pytest.raises(RuntimeError, match="bad failed"):
            graph.run("all")

        assert log == ["ok", "bad"]

    def test_run_unknown(self, graph: ResourceGraph) -> None:
        with pytest.raises(UnknownOperationError):
            graph.run("security:ghost:create")

    def test_cycle_detected_at_run(self, graph: ResourceGraph) -> None:
        graph.add_operation("a", prerequisites=["b"])
        graph.add_operation("b", prerequisites=["a"])

        with pytest.raises(CyclicDependencyError, match="a -> b -> a"):
            graph.run("a")

    def test_host_create_runs_spinup_then_provision(
        self,
        graph: ResourceGraph,
        provider: MockCloudProvider,
        state: MockEc2State,
        runner: RecordingRunner,
    ) -> None:
        state.add_group("web")
        graph.register_host(
            HostSpec(name="app", security_groups=["web"], runlist="role[app]")
        )

        executed = graph.run("host:app:create")

        assert executed == ["host:app:spinup", "host:app:provision", "host:app:create"]
        assert runner.call_count == 1
        assert len(state.running_instances("app")) == 1
        assert provider.call_names()[0] == "find_running_instance"

    def test_down_on_empty_account(
        self, graph: ResourceGraph, provider: MockCloudProvider
    ) -> None:
        """Test that tearing down nothing is a clean no-op."""
        graph.register_security_group(SecurityGroupSpec(name="web"))
        graph.register_host(HostSpec(name="app", security_groups=["web"]))

        graph.run(DOWN)

        assert provider.call_names() == ["get_security_group", "find_running_instance"]


class TestValidate:
    """Tests for ResourceGraph.validate."""

    def test_valid(self, graph: ResourceGraph) -> None:
        graph.register_security_group(SecurityGroupSpec(name="web"))
        graph.register_host(HostSpec(name="app", security_groups=["web"]))

        graph.validate()

    def test_unknown_prerequisite(self, graph: ResourceGraph) -> None:
        graph.add_operation("a", prerequisites=["missing"])

        with pytest.raises(UnknownOperationError, match="missing"):
            graph.validate()

    def test_cycle(self, graph: ResourceGraph) -> None:
        graph.add_operation("a", prerequisites=["b"])
        graph.add_operation("b", prerequisites=["c"])
        graph.add_operation("c", prerequisites=["a"])

        with pytest.raises(CyclicDependencyError) as exc_info:
            graph.validate()

        for name in ("a", "b", "c"):
            assert name in str(exc_info.value)

    def test_add_prerequisite_unknown_target(self, graph: ResourceGraph) -> None:
        with pytest.raises(UnknownOperationError):
            graph.add_prerequisite("nope", UP)
