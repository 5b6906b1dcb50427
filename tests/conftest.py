"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from aws_mock import FakeClock, MockCloudProvider, MockEc2State, RecordingRunner  # noqa: E402

from ponyup.config import Config  # noqa: E402
from ponyup.hosts import HostLifecycleManager  # noqa: E402
from ponyup.profiles import HostDefaults  # noqa: E402
from ponyup.resource_graph import ResourceGraph  # noqa: E402
from ponyup.security_groups import SecurityGroupReconciler  # noqa: E402


@pytest.fixture
def state() -> MockEc2State:
    return MockEc2State()


@pytest.fixture
def provider(state: MockEc2State) -> MockCloudProvider:
    return MockCloudProvider(state)


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        identity_dir=tmp_path / "ssh",
        ready_timeout_seconds=60,
        ready_poll_interval_seconds=5,
    )


@pytest.fixture
def defaults() -> HostDefaults:
    return HostDefaults(key_name="deploy", image_id="ami-12345678", size="t3.small")


@pytest.fixture
def reconciler(provider: MockCloudProvider) -> SecurityGroupReconciler:
    return SecurityGroupReconciler(provider)


@pytest.fixture
def hosts(
    provider: MockCloudProvider,
    runner: RecordingRunner,
    config: Config,
    defaults: HostDefaults,
    clock: FakeClock,
) -> HostLifecycleManager:
    return HostLifecycleManager(
        provider,
        runner,
        config,
        defaults,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def graph(reconciler: SecurityGroupReconciler, hosts: HostLifecycleManager) -> ResourceGraph:
    return ResourceGraph(reconciler, hosts)
