"""EC2 mock for integration testing.

In-memory stand-ins for the provider and the command runner, so the
reconciler, lifecycle manager and graph can be exercised end to end
without AWS or knife.

Usage:
    from aws_mock import MockCloudProvider, MockEc2State, RecordingRunner

    state = MockEc2State()
    provider = MockCloudProvider(state)
    SecurityGroupReconciler(provider).create(spec)

    assert state.public_ports("web") == {PortRange(min=80, max=80)}
"""

from .clock import FakeClock
from .provider import MockCloudProvider, ProviderCall
from .runner import RecordingRunner
from .state import (
    MockEc2State,
    MockGroup,
    MockInstance,
    MockProviderError,
    PrefixListRef,
)

__all__ = [
    "FakeClock",
    "MockCloudProvider",
    "MockEc2State",
    "MockGroup",
    "MockInstance",
    "MockProviderError",
    "PrefixListRef",
    "ProviderCall",
    "RecordingRunner",
]
