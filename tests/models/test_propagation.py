import pytest

from tenantdb import ConnectionRegistry, ModelDefinitionMap, ModelPropagator, TenancyOptions
from tests.helpers import CountingFactory, invoice_definition, order_definition

pytestmark = pytest.mark.anyio


@pytest.fixture()
def definitions():
    return ModelDefinitionMap()


@pytest.fixture()
async def registry(definitions):
    factory = CountingFactory(TenancyOptions(uri=lambda tenant: f"sqlite+aiosqlite:///{tenant}"))
    registry = ConnectionRegistry(factory, definitions)
    async with registry:
        yield registry


@pytest.fixture()
def propagator(definitions, registry):
    return ModelPropagator(definitions, registry)


async def test_register_before_creation(propagator, registry):
    assert propagator.register(order_definition()) is True

    connection = await registry.get_or_create("acme")

    assert connection.has_model("Order")


async def test_register_after_creation(propagator, registry):
    connection = await registry.get_or_create("acme")
    assert not connection.has_model("Order")

    propagator.register(order_definition())

    assert connection.has_model("Order")
    assert "orders" in connection.metadata.tables


async def test_register_reaches_every_live_connection(propagator, registry):
    acme = await registry.get_or_create("acme")
    globex = await registry.get_or_create("globex")

    propagator.register(invoice_definition())

    assert acme.has_model("Invoice")
    assert globex.has_model("Invoice")
    assert acme.table("Invoice") is not globex.table("Invoice")


async def test_register_twice_is_a_noop(propagator, registry, definitions):
    connection = await registry.get_or_create("acme")
    first = order_definition()
    propagator.register(first)
    attached = connection.table("Order")

    assert propagator.register(order_definition()) is False
    assert propagator.register(first) is False

    assert len(definitions) == 1
    assert definitions.get("Order") is first
    assert connection.table("Order") is attached
    assert list(connection.metadata.tables) == ["orders"]


async def test_register_many_returns_new_definitions(propagator):
    order = order_definition()
    invoice = invoice_definition()
    propagator.register(order)

    registered = propagator.register_many([order, invoice, invoice_definition()])

    assert registered == [invoice]
