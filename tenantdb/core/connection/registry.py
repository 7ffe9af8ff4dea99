from __future__ import annotations

import asyncio
import threading
from types import TracebackType

from loguru import logger

from tenantdb.conf import settings
from tenantdb.core.connection.connection import TenantConnection
from tenantdb.core.connection.factory import ConnectionFactory
from tenantdb.core.models.definitions import ModelDefinitionMap
from tenantdb.exceptions import TenantConnectionError


class _CreationLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class ConnectionRegistry:
    """
    The cache of tenant connections.

    Holds at most one `TenantConnection` per tenant id for its whole lifetime
    and guarantees that every model known to the `ModelDefinitionMap` is
    attached to a connection before that connection is handed out.

    Creation uses one `asyncio.Lock` per tenant id, so first time connections
    of different tenants never wait on each other, while concurrent first time
    callers of the same tenant share a single creation. A lock only lives while
    some caller holds or waits for it, whatever the outcome of the creation.

    Models registered while a connection is being created are covered from both
    sides: the connection attaches the whole definition map before it is
    published and reads the map once more right after publishing, while the
    `ModelPropagator` writes the map before iterating the published
    connections. Attaching is idempotent, so a model reaching a connection
    through both paths is attached once.

    A creation still running when `close_all` is called is not published: its
    connection is disposed and the caller gets a `TenantConnectionError`.
    """

    def __init__(
        self,
        factory: ConnectionFactory,
        definitions: ModelDefinitionMap,
        *,
        force_create_tables: bool = False,
    ) -> None:
        """
        Initializes an empty ConnectionRegistry.

        Args:
            factory (ConnectionFactory): Builds the connection of a tenant.
            definitions (ModelDefinitionMap): The models attached to every
                                              connection.
            force_create_tables (bool): Create the tables of the attached models
                                        when a connection is opened.
        """
        self.factory = factory
        self.definitions = definitions
        self.force_create_tables = force_create_tables
        self._connections: dict[str, TenantConnection] = {}
        self._locks: dict[str, _CreationLock] = {}
        self._locks_guard = threading.Lock()
        # Bumped by close_all; creations started before a close are discarded.
        self._generation = 0

    def _checkout_lock(self, tenant_id: str) -> _CreationLock:
        with self._locks_guard:
            entry = self._locks.get(tenant_id)
            if entry is None:
                entry = self._locks[tenant_id] = _CreationLock()
            entry.users += 1
            return entry

    def _checkin_lock(self, tenant_id: str, entry: _CreationLock) -> None:
        with self._locks_guard:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(tenant_id) is entry:
                del self._locks[tenant_id]

    def get(self, tenant_id: str) -> TenantConnection | None:
        return self._connections.get(tenant_id)

    def tenant_ids(self) -> list[str]:
        return list(self._connections)

    def snapshot(self) -> list[TenantConnection]:
        """
        Returns the connections published so far.
        """
        return list(self._connections.values())

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    async def get_or_create(self, tenant_id: str) -> TenantConnection:
        """
        Returns the connection of `tenant_id`, creating it on first use.

        Args:
            tenant_id (str): The tenant.

        Returns:
            TenantConnection: The cached connection, with every registered
                              model attached.

        Raises:
            TenantConnectionError: If the connection could not be opened, or if
                                   the registry was closed while it was being
                                   opened. Nothing is cached and a later call
                                   retries.
        """
        connection = self._connections.get(tenant_id)
        if connection is not None:
            return connection

        entry = self._checkout_lock(tenant_id)
        try:
            async with entry.lock:
                # Another caller may have finished the creation while we waited.
                connection = self._connections.get(tenant_id)
                if connection is not None:
                    return connection
                return await self._create(tenant_id)
        finally:
            self._checkin_lock(tenant_id, entry)

    async def _create(self, tenant_id: str) -> TenantConnection:
        generation = self._generation
        connection = await self.factory.build(tenant_id)
        try:
            connection.add_models(definition for _, definition in self.definitions.all())
            if self.force_create_tables:
                await connection.create_tables()
            if generation != self._generation:
                raise TenantConnectionError(
                    tenant_id,
                    dialect=connection.dialect,
                    host=connection.host,
                    reason="the registry was closed while the connection was opening",
                )
        except BaseException:
            await connection.dispose()
            raise

        self._connections[tenant_id] = connection
        late = connection.add_models(definition for _, definition in self.definitions.all())
        if late and self.force_create_tables:
            try:
                await connection.create_tables(late)
            except Exception as exc:
                # The connection is published already, the caller still gets it.
                logger.opt(exception=exc).error(
                    f"Failed to create the tables {late} for tenant '{tenant_id}'."
                )
        return connection

    async def close_all(self) -> None:
        """
        Disposes every connection and empties the registry.

        Creations still in progress are discarded when they finish.

        Engines are disposed concurrently, at most `settings.registry_ops_limit`
        at a time. Failures are logged and the first one is re-raised after all
        connections were processed.
        """
        self._generation += 1
        connections = self.snapshot()
        self._connections.clear()
        if not connections:
            return

        limit = settings.registry_ops_limit
        semaphore = asyncio.Semaphore(limit) if limit else None

        async def dispose(connection: TenantConnection) -> None:
            if semaphore is None:
                await connection.dispose()
                return
            async with semaphore:
                await connection.dispose()

        results = await asyncio.gather(
            *(dispose(connection) for connection in connections), return_exceptions=True
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors:
            logger.opt(exception=error).error("Failed to close a tenant connection.")
        if errors:
            raise errors[0]

    async def __aenter__(self) -> ConnectionRegistry:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: TracebackType | None = None,
    ) -> None:
        await self.close_all()


__all__ = ["ConnectionRegistry"]
