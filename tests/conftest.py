# === MODULE PURPOSE ===
# Pytest configuration and shared fixtures for tests.

import pytest


# Marker for tests that open real sockets on the loopback interface
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "socket: marks tests that bind a loopback port (may be slow)"
    )


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for pytest-asyncio."""
    return "asyncio"
