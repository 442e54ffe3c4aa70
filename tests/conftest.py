"""pytest configuration for pgdiscovery tests."""

import pytest

from pgdiscovery.script import integrity


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture(autouse=True)
def _reset_script_hashes():
    """Each test starts with an empty script hash cache and trust list."""
    integrity.forget_script_hash()
    trusted = set(integrity.TRUSTED_SCRIPT_HASHES)
    yield
    integrity.forget_script_hash()
    integrity.TRUSTED_SCRIPT_HASHES.clear()
    integrity.TRUSTED_SCRIPT_HASHES.update(trusted)
