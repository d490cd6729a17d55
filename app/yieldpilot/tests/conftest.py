"""Shared pytest fixtures for yield pilot tests."""

import pytest
import pytest_asyncio

from app.yieldpilot.core.clock import FakeClock
from app.yieldpilot.tests.fixtures.factories import T0, ControllerHarness


@pytest.fixture
def fake_clock():
    return FakeClock(initial_time=T0)


@pytest_asyncio.fixture
async def make_harness():
    """Factory for controller harnesses, stopped and drained at teardown."""
    created = []

    def factory(**kwargs):
        harness = ControllerHarness(**kwargs)
        created.append(harness)
        return harness

    yield factory

    for harness in created:
        await harness.close()
