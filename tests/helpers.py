import asyncio

import sqlalchemy
from sqlalchemy.ext.asyncio import create_async_engine

from tenantdb import ConnectionFactory, ModelDefinition, TenantConnection
from tenantdb.exceptions import TenantConnectionError


def order_definition(name: str = "Order") -> ModelDefinition:
    return ModelDefinition.from_columns(
        name,
        sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True, autoincrement=True),
        sqlalchemy.Column("reference", sqlalchemy.String(length=64), nullable=False),
        tablename="orders",
    )


def invoice_definition(name: str = "Invoice") -> ModelDefinition:
    return ModelDefinition.from_columns(
        name,
        sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True, autoincrement=True),
        sqlalchemy.Column("total", sqlalchemy.Integer, nullable=False, default=0),
        tablename="invoices",
    )


class CountingFactory(ConnectionFactory):
    """
    Builds connections on an in-memory engine, recording every open call.
    """

    delay: float = 0.05
    connection_class: type[TenantConnection] = TenantConnection

    def __init__(self, options):
        super().__init__(options)
        self.calls: list[str] = []
        self.urls: list[sqlalchemy.URL] = []
        self.fail_for: set[str] = set()

    async def build(self, tenant_id: str) -> TenantConnection:
        self.calls.append(tenant_id)
        url = self.build_url(tenant_id)
        self.urls.append(url)
        await asyncio.sleep(self.delay)
        if tenant_id in self.fail_for:
            raise TenantConnectionError(
                tenant_id, dialect=url.get_backend_name(), host=url.host, reason="refused"
            )
        engine = create_async_engine("sqlite+aiosqlite://")
        return self.connection_class(
            tenant_id, engine, dialect=url.get_backend_name(), host=url.host
        )
