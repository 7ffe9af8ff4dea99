from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from tenantdb.core.tenancy.validators import TenancyValidator
from tenantdb.exceptions import ImproperlyConfigured

StatementLogger = Callable[[str, float], None]


class TenancyOptions(BaseModel):
    """
    The immutable configuration of a `TenancyManager`.

    Field names are snake case but the camel case spelling is accepted too,
    so `{"tenantIdentifier": "x-tenant"}` and `{"tenant_identifier": "x-tenant"}`
    produce the same options.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    tenant_id: str | None = None
    """
    A static tenant. When set, resolution from the request is skipped.
    """
    is_tenant_from_subdomain: bool = False
    """
    If `True`, the tenant id is the first label of the request host.
    """
    tenant_identifier: str | None = None
    """
    The request header holding the tenant id.
    """
    dialect: str | None = None
    """
    The database dialect, e.g. `postgres`, `mysql`, `sqlite`. An explicit
    `dialect+driver` is used as given. Defaults to `settings.default_dialect`.
    """
    database: str | None = None
    """
    The database name. `{tenant_id}` is replaced by the tenant id, otherwise the
    tenant database is named `<database>_<tenant_id>`.
    """
    username: str | None = None
    password: str | None = None
    host: str | None = "localhost"
    port: int | None = None
    ssl: bool = False
    protocol: str = "tcp"
    """
    `tcp` connects to host and port. Any other value treats `host` as the
    directory of a unix socket.
    """
    timezone: str = "+00:00"
    """
    The session timezone set on every new database connection.
    """
    uri: Callable[[str], str] | None = None
    """
    Builds the connection URI of a tenant. Overrides the discrete fields.
    """
    validator: Callable[[str], TenancyValidator] | None = None
    """
    Builds the validator invoked before a tenant connection is served.
    """
    whitelist: Union[Sequence[str], str, None] = None
    """
    Allowed tenant ids, either as a list or as a regular expression.
    """
    force_create_collections: bool = False
    """
    Create the tables of the attached models when a tenant connection is opened
    and when a model is registered while connections are live.
    """
    logging: Union[bool, StatementLogger, None] = None
    """
    `True` logs every statement with its timing, a callable receives
    `(statement, timing_ms)`. Defaults to `settings.log_statements`.
    """
    connect_timeout: float | None = None
    """
    Seconds allowed for opening a tenant connection. Defaults to
    `settings.connect_timeout`.
    """
    engine_options: dict[str, Any] = {}
    """
    Extra keyword arguments for `create_async_engine`.
    """

    @classmethod
    def from_value(cls, value: TenancyOptions | Mapping[str, Any]) -> TenancyOptions:
        """
        Validates `value` into options, turning pydantic errors into
        `ImproperlyConfigured`.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise ImproperlyConfigured(
                f"Tenancy options must be a mapping or TenancyOptions, got {type(value).__name__}."
            )
        try:
            return cls.model_validate(dict(value))
        except ValidationError as exc:
            raise ImproperlyConfigured("Invalid tenancy options.", detail=str(exc)) from exc


OptionsValue = Union[TenancyOptions, Mapping[str, Any]]


@runtime_checkable
class TenancyOptionsFactory(Protocol):
    """
    Builds the options at startup. `create_tenancy_options` may be a plain
    method or a coroutine.
    """

    def create_tenancy_options(self) -> OptionsValue | Awaitable[OptionsValue]: ...


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def resolve_options(
    options: OptionsValue | None = None,
    *,
    use_factory: Callable[..., OptionsValue | Awaitable[OptionsValue]] | None = None,
    use_class: type[TenancyOptionsFactory] | None = None,
    use_existing: TenancyOptionsFactory | None = None,
    inject: Sequence[Any] = (),
) -> TenancyOptions:
    """
    Resolves the tenancy options exactly once, before anything is served.

    Exactly one source must be given.

    Args:
        options (OptionsValue | None): Options supplied directly.
        use_factory (Callable | None): A sync or async callable returning the
                                       options. It is called with `inject`
                                       as positional arguments, which allows
                                       depending on other configuration.
        use_class (type[TenancyOptionsFactory] | None): A class instantiated
                                                        without arguments whose
                                                        `create_tenancy_options`
                                                        returns the options.
        use_existing (TenancyOptionsFactory | None): An existing factory instance.
        inject (Sequence[Any]): Arguments passed to `use_factory`.

    Returns:
        TenancyOptions: The validated immutable options.

    Raises:
        ImproperlyConfigured: If no source or more than one source is given, or
                              if the produced options are invalid.
    """
    sources = [
        source
        for source in (options, use_factory, use_class, use_existing)
        if source is not None
    ]
    if len(sources) != 1:
        raise ImproperlyConfigured(
            "Provide exactly one of 'options', 'use_factory', 'use_class' or 'use_existing'."
        )
    if inject and use_factory is None:
        raise ImproperlyConfigured("'inject' can only be used together with 'use_factory'.")

    if options is not None:
        return TenancyOptions.from_value(options)
    if use_factory is not None:
        value = await _maybe_await(use_factory(*inject))
        return TenancyOptions.from_value(value)

    factory = use_existing if use_existing is not None else use_class()  # type: ignore[misc]
    if not isinstance(factory, TenancyOptionsFactory):
        raise ImproperlyConfigured(
            f"{type(factory).__name__} doesn't implement 'create_tenancy_options'."
        )
    value = await _maybe_await(factory.create_tenancy_options())
    return TenancyOptions.from_value(value)


__all__ = [
    "StatementLogger",
    "TenancyOptions",
    "TenancyOptionsFactory",
    "resolve_options",
]
