from __future__ import annotations

import ipaddress
from collections.abc import Callable
from typing import TYPE_CHECKING

from lilya.requests import Connection
from lilya.types import Scope

from tenantdb.conf import settings
from tenantdb.exceptions import TenantResolutionError

if TYPE_CHECKING:
    from tenantdb.core.tenancy.options import TenancyOptions

TenantResolver = Callable[[Scope, "TenancyOptions"], str]


def get_header(scope: Scope, name: str) -> str | None:
    """
    Reads a header of an `http` or `websocket` scope. Header names are case
    insensitive.
    """
    return Connection(scope).headers.get(name)


def tenant_from_host(host: str | None) -> str | None:
    """
    Extracts the subdomain of `host`, e.g. `acme` for `acme.example.com:8000`.

    Hosts with fewer than three labels and IP addresses have no subdomain.
    """
    if not host:
        return None
    hostname = host.strip()
    if hostname.startswith("["):
        # bracketed ipv6 literal
        return None
    hostname = hostname.rsplit(":", 1)[0] if ":" in hostname else hostname
    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass
    labels = [label for label in hostname.split(".") if label]
    if len(labels) < 3:
        return None
    return labels[0]


def resolve_tenant_id(scope: Scope, options: TenancyOptions) -> str:
    """
    Resolves the tenant id of a request.

    The static `tenant_id` option wins. With `is_tenant_from_subdomain` the
    first label of the host is used, otherwise the `tenant_identifier` header
    (or `settings.tenant_header` when no identifier is configured).

    Args:
        scope (Scope): The ASGI scope of the request.
        options (TenancyOptions): The tenancy options.

    Returns:
        str: The tenant id.

    Raises:
        TenantResolutionError: If the request carries no tenant id.
    """
    if options.tenant_id:
        return options.tenant_id

    if options.is_tenant_from_subdomain:
        tenant_id = tenant_from_host(get_header(scope, "host"))
        if not tenant_id:
            raise TenantResolutionError("Tenant ID is mandatory")
        return tenant_id

    identifier = options.tenant_identifier or settings.tenant_header
    tenant_id = get_header(scope, identifier)
    if tenant_id is None or not tenant_id.strip():
        raise TenantResolutionError(f"{identifier} is not supplied")
    return tenant_id.strip()


__all__ = ["TenantResolver", "get_header", "resolve_tenant_id", "tenant_from_host"]
