from __future__ import annotations

__version__ = "0.1.0"

from .conf import settings
from .conf.global_settings import TenancySettings
from .core.connection import ConnectionFactory, ConnectionRegistry, TenantConnection
from .core.models import BoundModel, ModelDefinition, ModelDefinitionMap, ModelPropagator
from .core.tenancy import (
    TenancyManager,
    TenancyOptions,
    TenancyOptionsFactory,
    TenancyValidator,
    WhitelistValidator,
    get_tenant,
    resolve_options,
    resolve_tenant_id,
    with_tenant,
)
from .exceptions import (
    ImproperlyConfigured,
    ModelNotFound,
    QueryError,
    TenancyException,
    TenantConnectionError,
    TenantResolutionError,
    TenantValidationError,
)

__all__ = [
    "BoundModel",
    "ConnectionFactory",
    "ConnectionRegistry",
    "ImproperlyConfigured",
    "ModelDefinition",
    "ModelDefinitionMap",
    "ModelNotFound",
    "ModelPropagator",
    "QueryError",
    "TenancyException",
    "TenancyManager",
    "TenancyOptions",
    "TenancyOptionsFactory",
    "TenancySettings",
    "TenancyValidator",
    "TenantConnection",
    "TenantConnectionError",
    "TenantResolutionError",
    "TenantValidationError",
    "WhitelistValidator",
    "get_tenant",
    "resolve_options",
    "resolve_tenant_id",
    "settings",
    "with_tenant",
]
