from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable, Sequence
from functools import partial
from types import TracebackType
from typing import Any, overload

from lilya.types import ASGIApp, Scope
from loguru import logger

from tenantdb.core.connection.asgi import TenancyLifespan
from tenantdb.core.connection.connection import TenantConnection
from tenantdb.core.connection.factory import ConnectionFactory
from tenantdb.core.connection.registry import ConnectionRegistry
from tenantdb.core.models.bound import BoundModel
from tenantdb.core.models.definitions import ModelDefinition, ModelDefinitionMap
from tenantdb.core.models.propagation import ModelPropagator
from tenantdb.core.tenancy.context_vars import get_tenant, is_validated
from tenantdb.core.tenancy.options import (
    OptionsValue,
    TenancyOptions,
    TenancyOptionsFactory,
    resolve_options,
)
from tenantdb.core.tenancy.resolver import TenantResolver, resolve_tenant_id
from tenantdb.core.tenancy.validators import WhitelistValidator
from tenantdb.exceptions import ModelNotFound, TenantResolutionError, TenantValidationError


class TenancyManager:
    """
    The command center of tenantdb.

    A manager is built once at startup from resolved options and owns the
    process wide state: the `ModelDefinitionMap`, the `ConnectionRegistry` and
    the `ModelPropagator` working on both. It is passed by reference to
    whatever needs tenant connections; tenantdb keeps no module level
    registries.

    ```python
    manager = TenancyManager({"dialect": "postgres", "host": "db", "database": "app"})
    await manager.register_model(Order)

    async with manager:
        orders = await manager.get_model("Order", tenant_id="acme")
    ```
    """

    def __init__(
        self,
        options: OptionsValue | None = None,
        *,
        factory_class: type[ConnectionFactory] = ConnectionFactory,
        resolver: TenantResolver = resolve_tenant_id,
    ) -> None:
        """
        Initializes a TenancyManager.

        Args:
            options (OptionsValue | None): The options, as `TenancyOptions` or a
                                           mapping. Defaults to empty options.
            factory_class (type[ConnectionFactory]): The factory used to open
                                                     tenant connections.
            resolver (TenantResolver): Derives the tenant id of a request scope.
        """
        self.options = TenancyOptions.from_value(options if options is not None else {})
        self.resolver = resolver
        self.definitions = ModelDefinitionMap()
        self.factory = factory_class(self.options)
        self.connections = ConnectionRegistry(
            self.factory,
            self.definitions,
            force_create_tables=self.options.force_create_collections,
        )
        self.propagator = ModelPropagator(self.definitions, self.connections)
        self.whitelist: WhitelistValidator | None = (
            WhitelistValidator(self.options.whitelist)
            if self.options.whitelist is not None
            else None
        )

    @classmethod
    async def from_options(
        cls,
        options: OptionsValue | None = None,
        *,
        use_factory: Callable[..., OptionsValue | Awaitable[OptionsValue]] | None = None,
        use_class: type[TenancyOptionsFactory] | None = None,
        use_existing: TenancyOptionsFactory | None = None,
        inject: Sequence[Any] = (),
        **kwargs: Any,
    ) -> TenancyManager:
        """
        Resolves the options from exactly one source and builds the manager.

        See `resolve_options` for the sources. Remaining keyword arguments are
        passed to the constructor.
        """
        resolved = await resolve_options(
            options,
            use_factory=use_factory,
            use_class=use_class,
            use_existing=use_existing,
            inject=inject,
        )
        return cls(resolved, **kwargs)

    async def register_model(self, definition: ModelDefinition) -> bool:
        """
        Registers a model and attaches it to every live tenant connection.

        With `force_create_collections`, the table is created on each live
        connection as well. Creation is attempted on every connection even if
        some of them fail. Registering a known name is a no-op.

        Returns:
            bool: `True` if the model was new.

        Raises:
            Exception: The first table creation failure, after every live
                       connection was tried. The model stays registered.
        """
        if not self.propagator.register(definition):
            return False
        if self.options.force_create_collections:
            connections = self.connections.snapshot()
            results = await asyncio.gather(
                *(connection.create_tables([definition.name]) for connection in connections),
                return_exceptions=True,
            )
            errors: list[BaseException] = []
            for connection, result in zip(connections, results):
                if isinstance(result, BaseException):
                    logger.opt(exception=result).error(
                        f"Failed to create the table of model '{definition.name}' "
                        f"for tenant '{connection.tenant_id}'."
                    )
                    errors.append(result)
            if errors:
                raise errors[0]
        return True

    async def register_models(
        self, definitions: Iterable[ModelDefinition]
    ) -> list[ModelDefinition]:
        """
        Registers several models and returns the ones that were new.
        """
        registered = []
        for definition in definitions:
            if await self.register_model(definition):
                registered.append(definition)
        return registered

    def get_definition(self, name: str) -> ModelDefinition:
        definition = self.definitions.get(name)
        if definition is None:
            raise ModelNotFound(f'Model "{name}" is not registered.')
        return definition

    def current_tenant(self, tenant_id: str | None = None) -> str:
        """
        Picks the tenant of the current unit of work.

        Precedence: the explicit argument, the static `tenant_id` option, then
        the tenant activated with `with_tenant` (e.g. by the middleware).

        Raises:
            TenantResolutionError: If none of them yields a tenant id.
        """
        tenant = tenant_id or self.options.tenant_id or get_tenant()
        if not tenant:
            raise TenantResolutionError("No tenant is active for the current context.")
        return tenant

    async def validate_tenant(self, tenant_id: str) -> None:
        """
        Runs the whitelist and the configured validator for `tenant_id`.

        Raises:
            TenantValidationError: If the tenant is rejected. Exceptions raised
                                   by the validator are converted, their
                                   message becoming the reason.
        """
        if self.whitelist is not None and not self.whitelist.is_allowed(tenant_id):
            logger.warning(f"Tenant '{tenant_id}' is not whitelisted.")
            raise TenantValidationError(tenant_id, "tenant is not whitelisted")

        if self.options.validator is None:
            return
        try:
            validator = self.options.validator(tenant_id).set_tenant_id(tenant_id)
            result = validator.validate()
            if inspect.isawaitable(result):
                result = await result
        except TenantValidationError:
            logger.warning(f"Tenant '{tenant_id}' was rejected by the validator.")
            raise
        except Exception as exc:
            logger.warning(f"Tenant '{tenant_id}' was rejected by the validator: {exc}")
            raise TenantValidationError(tenant_id, str(exc)) from exc
        if result is False:
            logger.warning(f"Tenant '{tenant_id}' was rejected by the validator.")
            raise TenantValidationError(tenant_id)

    async def connection(self, tenant_id: str | None = None) -> TenantConnection:
        """
        Returns the connection of a tenant, opening it on first use.

        Resolution and validation run before any connection work, so a rejected
        tenant never gets a connection created or returned. A tenant activated
        with `with_tenant(..., validated=True)` (e.g. by the middleware) is not
        validated again.

        Raises:
            TenantResolutionError: If no tenant is active.
            TenantValidationError: If the tenant is rejected.
            TenantConnectionError: If the connection could not be opened.
        """
        tenant = self.current_tenant(tenant_id)
        if not is_validated(tenant):
            await self.validate_tenant(tenant)
        return await self.connections.get_or_create(tenant)

    async def connection_for(self, scope: Scope) -> TenantConnection:
        """
        Resolves the tenant of an ASGI request scope and returns its connection.
        """
        return await self.connection(self.resolver(scope, self.options))

    async def get_model(self, name: str, tenant_id: str | None = None) -> BoundModel:
        """
        Returns model `name` bound to the connection of the current tenant.

        Raises:
            ModelNotFound: If no model of that name was registered.
        """
        self.get_definition(name)
        connection = await self.connection(tenant_id)
        return connection.model(name)

    async def close(self) -> None:
        """
        Closes every tenant connection. Registered models are kept.
        """
        await self.connections.close_all()

    async def __aenter__(self) -> TenancyManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: TracebackType | None = None,
    ) -> None:
        await self.close()

    @overload
    def asgi(
        self,
        app: None,
        handle_lifespan: bool = False,
    ) -> Callable[[ASGIApp], TenancyLifespan]: ...

    @overload
    def asgi(
        self,
        app: ASGIApp,
        handle_lifespan: bool = False,
    ) -> TenancyLifespan: ...

    def asgi(
        self,
        app: ASGIApp | None = None,
        handle_lifespan: bool = False,
    ) -> TenancyLifespan | Callable[[ASGIApp], TenancyLifespan]:
        """
        Wraps an ASGI application in a `TenancyLifespan`, so the tenant
        connections follow its lifespan. Without `app`, returns a decorator.
        """
        if app is not None:
            return TenancyLifespan(app=app, manager=self, handle_lifespan=handle_lifespan)
        return partial(TenancyLifespan, manager=self, handle_lifespan=handle_lifespan)


__all__ = ["TenancyManager"]
