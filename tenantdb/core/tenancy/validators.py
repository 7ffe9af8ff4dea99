from __future__ import annotations

import re
from collections.abc import Awaitable, Sequence
from typing import Protocol, Union, runtime_checkable

from tenantdb.exceptions import ImproperlyConfigured, TenantValidationError


@runtime_checkable
class TenancyValidator(Protocol):
    """
    Validates a tenant id before its connection is served.

    The manager calls `validator(tenant_id).set_tenant_id(tenant_id).validate()`.
    `validate` may be a plain method or a coroutine. It rejects the tenant by
    raising; the raised message becomes the reason of the resulting
    `TenantValidationError`.
    """

    def set_tenant_id(self, tenant_id: str) -> TenancyValidator: ...

    def validate(self) -> Union[None, Awaitable[None]]: ...


class WhitelistValidator:
    """
    Accepts only the tenant ids listed in a whitelist.

    The whitelist is either a collection of ids or a regular expression that
    must match the whole id.
    """

    def __init__(self, whitelist: Union[Sequence[str], str]) -> None:
        self.pattern: re.Pattern[str] | None = None
        self.allowed: frozenset[str] = frozenset()
        if isinstance(whitelist, str):
            self.pattern = re.compile(whitelist)
        else:
            self.allowed = frozenset(whitelist)
        self.tenant_id: str | None = None

    def set_tenant_id(self, tenant_id: str) -> WhitelistValidator:
        self.tenant_id = tenant_id
        return self

    def is_allowed(self, tenant_id: str) -> bool:
        if self.pattern is not None:
            return self.pattern.fullmatch(tenant_id) is not None
        return tenant_id in self.allowed

    def validate(self) -> None:
        if self.tenant_id is None:
            raise ImproperlyConfigured("set_tenant_id must be called before validate.")
        if not self.is_allowed(self.tenant_id):
            raise TenantValidationError(self.tenant_id, "tenant is not whitelisted")


__all__ = ["TenancyValidator", "WhitelistValidator"]
