import pytest

from attestgate.core.http_client import close_vendor_clients


@pytest.fixture
async def http_client_cleanup():
    yield
    # Vendor clients are bound to the loop of the test that created them
    await close_vendor_clients()
