from .middleware import TenancyMiddleware

__all__ = ["TenancyMiddleware"]
