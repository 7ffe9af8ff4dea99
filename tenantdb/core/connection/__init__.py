from .connection import TenantConnection
from .factory import ConnectionFactory
from .registry import ConnectionRegistry

__all__ = ["ConnectionFactory", "ConnectionRegistry", "TenantConnection"]
