"""Shared pytest configuration.

Async tests are marked ``@pytest.mark.anyio`` and use AnyIO's pytest plugin,
which registers itself through its entry point when anyio is installed.
"""

import pytest


@pytest.fixture(scope="session")
def anyio_backend():
    """Run async tests on asyncio only; timers use the running asyncio loop."""
    return "asyncio"
