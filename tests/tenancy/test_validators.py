import pytest

from tenantdb import TenancyManager, WhitelistValidator
from tenantdb.exceptions import ImproperlyConfigured, TenantValidationError
from tests.helpers import CountingFactory

pytestmark = pytest.mark.anyio


class AsyncValidator:
    def __init__(self, tenant_id):
        self.tenant_id = tenant_id

    def set_tenant_id(self, tenant_id):
        self.tenant_id = tenant_id
        return self

    async def validate(self):
        if self.tenant_id.startswith("blocked"):
            raise ValueError("tenant is blocked")


class SyncFalseValidator(AsyncValidator):
    def validate(self):
        return self.tenant_id != "nope"


class AlwaysRejects(AsyncValidator):
    def validate(self):
        raise TenantValidationError(self.tenant_id, "closed for business")


def make_manager(**options) -> TenancyManager:
    options.setdefault("uri", lambda tenant: f"sqlite+aiosqlite:///{tenant}")
    return TenancyManager(options, factory_class=CountingFactory)


def test_whitelist_list():
    validator = WhitelistValidator(["acme", "globex"])

    assert validator.is_allowed("acme")
    assert not validator.is_allowed("initech")

    validator.set_tenant_id("acme").validate()
    with pytest.raises(TenantValidationError):
        validator.set_tenant_id("initech").validate()


def test_whitelist_regex_matches_whole_id():
    validator = WhitelistValidator(r"tenant-\d+")

    assert validator.is_allowed("tenant-42")
    assert not validator.is_allowed("tenant-42-extra")
    assert not validator.is_allowed("xtenant-42")


async def test_whitelist_rejects_before_connecting():
    manager = make_manager(whitelist=["acme"])

    async with manager:
        with pytest.raises(TenantValidationError) as raised:
            await manager.connection("globex")

        assert raised.value.reason == "tenant is not whitelisted"
        assert manager.factory.calls == []

        await manager.connection("acme")
        assert manager.factory.calls == ["acme"]


async def test_async_validator_exception_becomes_validation_error():
    manager = make_manager(validator=AsyncValidator)

    async with manager:
        with pytest.raises(TenantValidationError) as raised:
            await manager.connection("blocked-1")

        assert raised.value.tenant_id == "blocked-1"
        assert raised.value.reason == "tenant is blocked"
        assert isinstance(raised.value.__cause__, ValueError)

        connection = await manager.connection("acme")
        assert connection.tenant_id == "acme"


async def test_validator_returning_false_rejects():
    manager = make_manager(validator=SyncFalseValidator)

    async with manager:
        with pytest.raises(TenantValidationError):
            await manager.connection("nope")

        await manager.connection("yes")


async def test_rejected_tenant_never_gets_a_connection():
    manager = make_manager(validator=AlwaysRejects)

    async with manager:
        for _ in range(3):
            with pytest.raises(TenantValidationError) as raised:
                await manager.connection("acme")
            assert raised.value.reason == "closed for business"

        assert manager.factory.calls == []
        assert len(manager.connections) == 0


def test_whitelist_requires_tenant_id():
    with pytest.raises(ImproperlyConfigured):
        WhitelistValidator(["acme"]).validate()
