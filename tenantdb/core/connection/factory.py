from __future__ import annotations

import asyncio
import ssl as ssl_module
import time
from typing import TYPE_CHECKING, Any

import sqlalchemy
from loguru import logger
from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tenantdb.conf import settings
from tenantdb.core.connection.connection import TenantConnection
from tenantdb.exceptions import ImproperlyConfigured, TenantConnectionError

if TYPE_CHECKING:
    from tenantdb.core.tenancy.options import StatementLogger, TenancyOptions

# Async drivers used for the plain dialect names accepted in the options.
DIALECT_DRIVERS: dict[str, str] = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mariadb": "mariadb+aiomysql",
    "sqlite": "sqlite+aiosqlite",
    "mssql": "mssql+aioodbc",
}

_TIMING_KEY = "tenantdb_query_start"

OPEN_ERRORS: tuple[type[BaseException], ...] = (
    SQLAlchemyError,
    OSError,
    ImportError,
    asyncio.TimeoutError,
)


class ConnectionFactory:
    """
    Builds the connection of a tenant from the base options.

    The factory holds no shared state: every `build` call creates and verifies
    a new engine. Caching and the one-connection-per-tenant guarantee belong to
    the `ConnectionRegistry`. Retries are left to the caller.
    """

    def __init__(self, options: TenancyOptions) -> None:
        self.options = options

    @property
    def dialect(self) -> str:
        return self.options.dialect or settings.default_dialect

    @property
    def drivername(self) -> str:
        """
        The SQLAlchemy `dialect+driver` name for the configured dialect.

        Raises:
            ImproperlyConfigured: If a plain dialect name has no known async driver.
        """
        dialect = self.dialect
        if "+" in dialect:
            return dialect
        try:
            return DIALECT_DRIVERS[dialect.lower()]
        except KeyError:
            raise ImproperlyConfigured(
                f'Dialect "{dialect}" has no async driver. Use "dialect+driver" or "uri".'
            ) from None

    @property
    def connect_timeout(self) -> float | None:
        if self.options.connect_timeout is not None:
            return self.options.connect_timeout
        return settings.connect_timeout

    def database_name(self, tenant_id: str) -> str:
        database = self.options.database
        if not database:
            return tenant_id
        if "{tenant_id}" in database:
            return database.replace("{tenant_id}", tenant_id)
        return f"{database}_{tenant_id}"

    def build_url(self, tenant_id: str) -> URL:
        """
        Returns the connection URL of `tenant_id`.

        The `uri` option wins over the discrete host, port and database fields.
        """
        if self.options.uri is not None:
            uri = self.options.uri(tenant_id)
            try:
                return make_url(uri)
            except ArgumentError as exc:
                raise ImproperlyConfigured(
                    f'The uri of tenant "{tenant_id}" is not a valid database URL.'
                ) from exc

        drivername = self.drivername
        backend = drivername.split("+", 1)[0]
        if backend == "sqlite":
            return URL.create(drivername, database=self.database_name(tenant_id))

        query: dict[str, str] = {}
        host = self.options.host
        port = self.options.port
        if self.options.protocol != "tcp" and host:
            # unix socket directory
            query["unix_socket" if backend in ("mysql", "mariadb") else "host"] = host
            host = None
            port = None
        return URL.create(
            drivername,
            username=self.options.username,
            password=self.options.password,
            host=host,
            port=port,
            database=self.database_name(tenant_id),
            query=query,
        )

    def engine_options(self, url: URL) -> dict[str, Any]:
        """
        Keyword arguments for `create_async_engine`.

        Translates the `timezone` and `ssl` options into the connect arguments
        of the driver and merges the user supplied `engine_options` on top.
        """
        backend = url.get_backend_name()
        connect_args: dict[str, Any] = {}
        if backend == "postgresql":
            connect_args["server_settings"] = {"timezone": self.options.timezone}
            if self.options.ssl:
                connect_args["ssl"] = True
        elif backend in ("mysql", "mariadb"):
            connect_args["init_command"] = f"SET time_zone = '{self.options.timezone}'"
            if self.options.ssl:
                connect_args["ssl"] = ssl_module.create_default_context()

        engine_options = dict(self.options.engine_options)
        connect_args.update(engine_options.pop("connect_args", {}))
        if connect_args:
            engine_options["connect_args"] = connect_args
        return engine_options

    def statement_logger(self, tenant_id: str) -> StatementLogger | None:
        logging = self.options.logging
        if logging is None:
            logging = settings.log_statements
        if logging is False:
            return None
        if logging is True:

            def log_statement(statement: str, timing: float) -> None:
                logger.debug(f"[{tenant_id}] ({timing:.2f} ms) {statement}")

            return log_statement
        return logging

    def install_statement_logging(self, engine: AsyncEngine, tenant_id: str) -> None:
        """
        Reports every executed statement with its timing in milliseconds.
        """
        callback = self.statement_logger(tenant_id)
        if callback is None:
            return

        def before_cursor_execute(
            conn: sqlalchemy.Connection,
            cursor: Any,
            statement: str,
            parameters: Any,
            context: Any,
            executemany: bool,
        ) -> None:
            conn.info.setdefault(_TIMING_KEY, []).append(time.perf_counter())

        def after_cursor_execute(
            conn: sqlalchemy.Connection,
            cursor: Any,
            statement: str,
            parameters: Any,
            context: Any,
            executemany: bool,
        ) -> None:
            started = conn.info[_TIMING_KEY].pop()
            callback(statement, (time.perf_counter() - started) * 1000)

        event.listen(engine.sync_engine, "before_cursor_execute", before_cursor_execute)
        event.listen(engine.sync_engine, "after_cursor_execute", after_cursor_execute)

    def create_engine(self, url: URL) -> AsyncEngine:
        return create_async_engine(url, **self.engine_options(url))

    async def verify(self, engine: AsyncEngine) -> None:
        """
        Opens and releases one connection so network and authentication
        failures surface at creation time.
        """
        async with engine.connect():
            pass

    async def build(self, tenant_id: str) -> TenantConnection:
        """
        Creates and opens the connection of `tenant_id`.

        Args:
            tenant_id (str): The tenant to connect.

        Returns:
            TenantConnection: The opened connection, without models attached.

        Raises:
            TenantConnectionError: If the engine could not be created or the
                                   database could not be reached in time.
        """
        url = self.build_url(tenant_id)
        dialect = url.get_backend_name()
        host = url.host
        engine: AsyncEngine | None = None
        try:
            engine = self.create_engine(url)
            self.install_statement_logging(engine, tenant_id)
            timeout = self.connect_timeout
            if timeout is not None and timeout > 0:
                await asyncio.wait_for(self.verify(engine), timeout)
            else:
                await self.verify(engine)
        except BaseException as exc:
            # Cancellation included, the engine never outlives a failed build.
            if engine is not None:
                await engine.dispose()
            if not isinstance(exc, OPEN_ERRORS):
                raise
            reason = str(exc) or type(exc).__name__
            if isinstance(exc, asyncio.TimeoutError):
                reason = f"timed out after {self.connect_timeout} seconds"
            logger.opt(exception=exc).error(
                f"Failed to open the connection of tenant '{tenant_id}'."
            )
            raise TenantConnectionError(
                tenant_id, dialect=dialect, host=host, reason=reason
            ) from exc

        logger.info(f"Opened the connection of tenant '{tenant_id}' ({dialect}, host={host!r}).")
        return TenantConnection(tenant_id, engine, dialect=dialect, host=host)


__all__ = ["ConnectionFactory", "DIALECT_DRIVERS"]
