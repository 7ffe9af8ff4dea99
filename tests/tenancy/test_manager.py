import asyncio

import pytest

from tenantdb import TenancyManager, TenancyOptions, TenantConnection, with_tenant
from tenantdb.exceptions import ModelNotFound, TenantResolutionError
from tests.helpers import CountingFactory, invoice_definition, order_definition

pytestmark = pytest.mark.anyio


@pytest.fixture()
async def manager():
    manager = TenancyManager(
        {
            "dialect": "postgres",
            "host": "db",
            "database": "app",
            "uri": lambda tenant: "postgres://db/app_" + tenant,
        },
        factory_class=CountingFactory,
    )
    async with manager:
        yield manager


async def test_first_request_opens_connection_with_models(manager):
    await manager.register_model(order_definition())

    connection = await manager.connection("acme")

    assert manager.factory.urls[0].database == "app_acme"
    assert manager.factory.urls[0].host == "db"
    assert connection.has_model("Order")


async def test_second_request_reuses_connection(manager):
    await manager.register_model(order_definition())

    first = await manager.connection("acme")
    second = await manager.connection("acme")

    assert first is second
    assert manager.factory.calls == ["acme"]


async def test_late_model_reaches_existing_connection(manager):
    await manager.register_model(order_definition())
    connection = await manager.connection("acme")

    assert await manager.register_model(invoice_definition())

    assert connection.has_model("Invoice")
    assert manager.factory.calls == ["acme"]


async def test_duplicate_registration_is_a_noop(manager):
    first = order_definition()
    await manager.register_model(first)
    connection = await manager.connection("acme")
    table = connection.table("Order")

    assert not await manager.register_model(order_definition())
    assert manager.get_definition("Order") is first
    assert connection.table("Order") is table


async def test_register_models(manager):
    registered = await manager.register_models(
        [order_definition(), invoice_definition(), order_definition()]
    )

    assert [definition.name for definition in registered] == ["Order", "Invoice"]


async def test_concurrent_requests_share_one_creation(manager):
    connections = await asyncio.gather(*(manager.connection("acme") for _ in range(5)))

    assert len({id(connection) for connection in connections}) == 1
    assert manager.factory.calls == ["acme"]


async def test_get_model(manager):
    await manager.register_model(order_definition())

    orders = await manager.get_model("Order", tenant_id="acme")

    assert orders.tenant_id == "acme"
    assert orders.table.name == "orders"


async def test_get_unknown_model(manager):
    with pytest.raises(ModelNotFound):
        await manager.get_model("Missing", tenant_id="acme")

    assert manager.factory.calls == []


async def test_current_tenant_precedence(manager):
    with pytest.raises(TenantResolutionError):
        manager.current_tenant()

    with with_tenant("context"):
        assert manager.current_tenant() == "context"
        assert manager.current_tenant("explicit") == "explicit"

        connection = await manager.connection()
        assert connection.tenant_id == "context"


async def test_static_tenant_option():
    manager = TenancyManager(
        {"tenant_id": "fixed", "uri": lambda tenant: f"sqlite+aiosqlite:///{tenant}"},
        factory_class=CountingFactory,
    )

    async with manager:
        with with_tenant("context"):
            assert manager.current_tenant() == "fixed"


async def test_connection_for_scope(manager):
    scope = {"type": "http", "headers": [(b"x-tenant-id", b"globex")]}

    connection = await manager.connection_for(scope)

    assert connection.tenant_id == "globex"


async def test_close_keeps_models(manager):
    await manager.register_model(order_definition())
    connection = await manager.connection("acme")

    await manager.close()

    assert connection.is_closed
    assert len(manager.connections) == 0
    assert "Order" in manager.definitions

    reopened = await manager.connection("acme")
    assert reopened is not connection
    assert reopened.has_model("Order")


async def test_from_options():
    async def load():
        return TenancyOptions(tenant_identifier="x-company")

    manager = await TenancyManager.from_options(use_factory=load, factory_class=CountingFactory)

    assert manager.options.tenant_identifier == "x-company"
    assert isinstance(manager.factory, CountingFactory)


async def test_force_create_tables_on_live_connections(tmp_path):
    manager = TenancyManager(
        {
            "uri": lambda tenant: f"sqlite+aiosqlite:///{tmp_path / tenant}.db",
            "force_create_collections": True,
        }
    )

    async with manager:
        await manager.register_model(order_definition())
        await manager.connection("acme")

        await manager.register_model(invoice_definition())

        invoices = await manager.get_model("Invoice", tenant_id="acme")
        await invoices.create(total=3)
        assert await invoices.count() == 1


async def test_asgi_lifespan_closes_connections(manager):
    async def app(scope, receive, send):
        raise AssertionError("lifespan is handled by the helper")

    asgi = manager.asgi(app, handle_lifespan=True)
    connection = await manager.connection("acme")

    messages = iter([{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}])
    sent = []

    async def receive():
        return next(messages)

    async def send(message):
        sent.append(message)

    await asgi({"type": "lifespan"}, receive, send)

    assert [message["type"] for message in sent] == [
        "lifespan.startup.complete",
        "lifespan.shutdown.complete",
    ]
    assert connection.is_closed
    assert len(manager.connections) == 0


async def test_asgi_decorator(manager):
    @manager.asgi
    async def app(scope, receive, send):
        pass

    assert app.manager is manager
    assert app.handle_lifespan is False


async def test_table_creation_failure_does_not_skip_other_connections():
    class FlakyConnection(TenantConnection):
        async def create_tables(self, names=None):
            if names is not None and self.tenant_id == "broken":
                raise RuntimeError("disk full")
            await super().create_tables(names)

    class FlakyFactory(CountingFactory):
        connection_class = FlakyConnection

    manager = TenancyManager(
        {
            "uri": lambda tenant: f"sqlite+aiosqlite:///{tenant}",
            "force_create_collections": True,
        },
        factory_class=FlakyFactory,
    )

    async with manager:
        await manager.connection("broken")
        healthy = await manager.connection("healthy")

        with pytest.raises(RuntimeError):
            await manager.register_model(order_definition())

        assert "Order" in manager.definitions
        orders = healthy.model("Order")
        await orders.create(reference="A-1")
        assert await orders.count() == 1


async def unused_app(scope, receive, send):
    raise AssertionError("lifespan is handled by the helper")


def lifespan_channel(*incoming):
    messages = iter([{"type": message} for message in incoming])
    sent = []

    async def receive():
        return next(messages)

    async def send(message):
        sent.append(message)

    return receive, send, sent


async def test_lifespan_startup_opens_static_tenant():
    manager = TenancyManager(
        {"tenant_id": "fixed", "uri": lambda tenant: f"sqlite+aiosqlite:///{tenant}"},
        factory_class=CountingFactory,
    )
    receive, send, sent = lifespan_channel("lifespan.startup", "lifespan.shutdown")

    await manager.asgi(unused_app, handle_lifespan=True)({"type": "lifespan"}, receive, send)

    assert [message["type"] for message in sent] == [
        "lifespan.startup.complete",
        "lifespan.shutdown.complete",
    ]
    assert manager.factory.calls == ["fixed"]
    assert len(manager.connections) == 0


async def test_lifespan_startup_failure_is_reported():
    manager = TenancyManager(
        {"tenant_id": "fixed", "uri": lambda tenant: f"sqlite+aiosqlite:///{tenant}"},
        factory_class=CountingFactory,
    )
    manager.factory.fail_for.add("fixed")
    receive, send, sent = lifespan_channel("lifespan.startup", "lifespan.shutdown")

    await manager.asgi(unused_app, handle_lifespan=True)({"type": "lifespan"}, receive, send)

    assert [message["type"] for message in sent] == ["lifespan.startup.failed"]
    assert "fixed" in sent[0]["message"]


async def test_lifespan_forwarded_to_app(manager):
    async def app(scope, receive, send):
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return

    connection = await manager.connection("acme")
    receive, send, sent = lifespan_channel("lifespan.startup", "lifespan.shutdown")

    await manager.asgi(app)({"type": "lifespan"}, receive, send)

    assert [message["type"] for message in sent] == [
        "lifespan.startup.complete",
        "lifespan.shutdown.complete",
    ]
    assert connection.is_closed
