import pytest

from tenantdb.conf import reload_settings


@pytest.fixture(scope="module")
def anyio_backend():
    return ("asyncio", {"debug": True})


@pytest.fixture(autouse=True)
def fresh_settings():
    # settings are cached, drop them so environment changes of a test don't leak
    reload_settings()
    yield
    reload_settings()
