"""Shared pytest fixtures for the personalization-engine test suite.

Wraps the factories in ``tests.fixtures.profiles``. No external service
dependencies are required for unit tests.
"""

from __future__ import annotations

import pytest

from tests.fixtures.profiles import FakeClock, make_profile


@pytest.fixture()
def clock() -> FakeClock:
    """A clock frozen at ``NOW`` until advanced."""
    return FakeClock()


@pytest.fixture()
def profile_factory():
    """Return the ``make_profile`` factory callable."""
    return make_profile


@pytest.fixture()
def sample_profile():
    """A single pre-built profile for tests that just need one."""
    return make_profile()
