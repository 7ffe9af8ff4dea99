from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

import sqlalchemy
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantdb.exceptions import ModelNotFound

if TYPE_CHECKING:
    from tenantdb.core.models.bound import BoundModel
    from tenantdb.core.models.definitions import ModelDefinition


class TenantConnection:
    """
    The connection of one tenant.

    Wraps the tenant's `AsyncEngine` together with the `MetaData` holding the
    tables attached to it. Pooling inside the tenant is left to the engine.
    Instances are created by the `ConnectionFactory` and cached by the
    `ConnectionRegistry`; application code normally never builds them.
    """

    def __init__(
        self,
        tenant_id: str,
        engine: AsyncEngine,
        *,
        dialect: str | None = None,
        host: str | None = None,
    ) -> None:
        """
        Initializes a TenantConnection.

        Args:
            tenant_id (str): The tenant this connection belongs to.
            engine (AsyncEngine): The opened engine of the tenant database.
            dialect (str | None): The configured dialect, kept for diagnostics.
            host (str | None): The configured host, kept for diagnostics.
        """
        self.tenant_id = tenant_id
        self.engine = engine
        self.dialect = dialect
        self.host = host
        self.metadata = sqlalchemy.MetaData()
        self.models: dict[str, sqlalchemy.Table] = {}
        self.is_closed: bool = False
        self._lock = threading.Lock()

    def add_model(self, definition: ModelDefinition) -> bool:
        """
        Attaches a model definition to this connection.

        Attaching is idempotent: a name already attached is left alone.

        Returns:
            bool: `True` if the model was attached by this call.
        """
        with self._lock:
            if definition.name in self.models:
                return False
            self.models[definition.name] = definition.attach(self.metadata)
        logger.debug(f"Attached model '{definition.name}' to tenant '{self.tenant_id}'.")
        return True

    def add_models(self, definitions: Iterable[ModelDefinition]) -> list[str]:
        """
        Attaches several definitions and returns the names newly attached.
        """
        return [
            definition.name for definition in definitions if self.add_model(definition)
        ]

    def has_model(self, name: str) -> bool:
        return name in self.models

    def table(self, name: str) -> sqlalchemy.Table:
        try:
            return self.models[name]
        except KeyError:
            raise ModelNotFound(
                f'Model "{name}" is not attached to tenant "{self.tenant_id}".'
            ) from None

    def model(self, name: str) -> BoundModel:
        """
        Returns the handle of model `name` bound to this connection.

        Raises:
            ModelNotFound: If the model is not attached.
        """
        from tenantdb.core.models.bound import BoundModel

        return BoundModel(self.table(name), self)

    async def create_tables(self, names: Sequence[str] | None = None) -> None:
        """
        Creates the tables of the attached models that don't exist yet.

        Args:
            names (Sequence[str] | None): Restrict the creation to these model
                                          names. Defaults to every attached model.
        """
        if names is None:
            tables = list(self.models.values())
        else:
            tables = [self.table(name) for name in names]
        if not tables:
            return
        async with self.engine.begin() as connection:
            await connection.run_sync(self.metadata.create_all, tables=tables, checkfirst=True)

    async def execute(self, statement: sqlalchemy.Executable) -> Any:
        """
        Executes a statement inside its own transaction.

        Returns:
            Any: The inserted primary key for single row inserts, else the
                 number of affected rows.
        """
        async with self.engine.begin() as connection:
            result = await connection.execute(statement)
            if result.is_insert and result.inserted_primary_key is not None:
                primary_key = tuple(result.inserted_primary_key)
                return primary_key[0] if len(primary_key) == 1 else primary_key
            return result.rowcount

    async def fetch_all(self, statement: sqlalchemy.Executable) -> list[sqlalchemy.Row]:
        async with self.engine.connect() as connection:
            result = await connection.execute(statement)
            return list(result.all())

    async def fetch_one(self, statement: sqlalchemy.Executable) -> sqlalchemy.Row | None:
        async with self.engine.connect() as connection:
            result = await connection.execute(statement)
            return result.first()

    async def fetch_val(self, statement: sqlalchemy.Executable) -> Any:
        async with self.engine.connect() as connection:
            result = await connection.execute(statement)
            return result.scalar()

    async def dispose(self) -> None:
        """
        Closes every pooled connection of the engine.
        """
        if self.is_closed:
            return
        self.is_closed = True
        await self.engine.dispose()
        logger.info(f"Closed the connection of tenant '{self.tenant_id}'.")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} tenant={self.tenant_id!r} models={list(self.models)!r}>"


__all__ = ["TenantConnection"]
