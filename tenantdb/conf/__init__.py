from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from tenantdb.conf.global_settings import TenancySettings


@lru_cache
def get_settings() -> TenancySettings:
    from tenantdb.conf.global_settings import TenancySettings

    return TenancySettings()


class SettingsForward:
    def __getattribute__(self, name: str) -> Any:
        return getattr(get_settings(), name)


settings: TenancySettings = cast("TenancySettings", SettingsForward())


def reload_settings() -> None:
    """
    Drop the cached settings so the next access reads the environment again.
    """
    get_settings.cache_clear()


__all__ = ["settings", "get_settings", "reload_settings"]
