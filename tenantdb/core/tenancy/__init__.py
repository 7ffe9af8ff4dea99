from .context_vars import get_tenant, with_tenant
from .manager import TenancyManager
from .options import TenancyOptions, TenancyOptionsFactory, resolve_options
from .resolver import resolve_tenant_id
from .validators import TenancyValidator, WhitelistValidator

__all__ = [
    "TenancyManager",
    "TenancyOptions",
    "TenancyOptionsFactory",
    "TenancyValidator",
    "WhitelistValidator",
    "get_tenant",
    "resolve_options",
    "resolve_tenant_id",
    "with_tenant",
]
