from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class TenancySettings(BaseSettings):
    """
    Process wide defaults for tenantdb.

    Values are read from the environment using the `TENANTDB_` prefix, e.g.
    `TENANTDB_CONNECT_TIMEOUT=5`. Per manager options (`TenancyOptions`) take
    precedence over these defaults.
    """

    model_config = SettingsConfigDict(env_prefix="TENANTDB_", extra="ignore")

    connect_timeout: float | None = 10.0
    """
    Seconds a tenant connection may take to open before a
    `TenantConnectionError` is raised. `None` or `0` disables the timeout.
    """
    registry_ops_limit: int | None = 10
    """
    The maximum number of connections disposed in parallel when the registry
    is closed. `None` or `0` means unbounded.
    """
    default_dialect: str = "mysql"
    """
    The dialect used when the options don't name one.
    """
    tenant_header: str = "x-tenant-id"
    """
    The header read by the default resolver when no `tenant_identifier` is
    configured and subdomain resolution is disabled.
    """
    log_statements: bool = False
    """
    Default for the `logging` option. When `True`, every executed statement is
    logged with its timing at DEBUG level.
    """
