from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar

# The tenant of the current unit of work. Set by the middleware, read by the
# manager when no tenant id is passed explicitly.
TENANT: ContextVar[str | None] = ContextVar("TENANT", default=None)
# The tenant that already passed validation in the current context.
VALIDATED_TENANT: ContextVar[str | None] = ContextVar("VALIDATED_TENANT", default=None)


def get_tenant() -> str | None:
    """
    Retrieves the tenant active in the current context, if any.
    """
    return TENANT.get()


def is_validated(tenant: str) -> bool:
    return VALIDATED_TENANT.get() == tenant


@contextmanager
def with_tenant(tenant: str | None, *, validated: bool = False) -> Generator[None, None, None]:
    """
    Activates `tenant` for the duration of the block and restores the previous
    value afterwards.

    Args:
        tenant (str | None): The tenant id, or None to clear the tenant inside
                             the block.
        validated (bool): Marks the tenant as already validated, so the manager
                          skips the validator for it inside the block.
    """
    token = TENANT.set(tenant)
    validated_token = VALIDATED_TENANT.set(tenant if validated else None)
    try:
        yield
    finally:
        VALIDATED_TENANT.reset(validated_token)
        TENANT.reset(token)


__all__ = ["TENANT", "VALIDATED_TENANT", "get_tenant", "is_validated", "with_tenant"]
