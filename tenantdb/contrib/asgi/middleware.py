from __future__ import annotations

from typing import TYPE_CHECKING

import orjson
from lilya import status
from lilya.protocols.middleware import MiddlewareProtocol
from lilya.responses import JSONResponse
from lilya.websockets import WebSocket
from loguru import logger

from tenantdb.core.tenancy.context_vars import with_tenant
from tenantdb.exceptions import TenantResolutionError, TenantValidationError

if TYPE_CHECKING:
    from lilya.types import ASGIApp, Receive, Scope, Send

    from tenantdb.core.tenancy.manager import TenancyManager


class TenancyMiddleware(MiddlewareProtocol):
    """
    Lilya middleware activating the tenant of each request.

    For `http` and `websocket` scopes the tenant id is resolved with the
    manager's resolver and validated before the application runs. The
    application is then executed inside `with_tenant`, so
    `manager.connection()` and `manager.get_model()` pick the request tenant
    without passing it around and without validating it a second time.
    Other scopes (e.g. `lifespan`) pass through.

    A request without a tenant id is answered with `400`, a rejected tenant
    with `403`; the application is not called in either case. Websocket
    connections are closed with `1008` instead.
    """

    def __init__(self, app: ASGIApp, manager: TenancyManager) -> None:
        """
        Initializes the TenancyMiddleware.

        Args:
            app (ASGIApp): The ASGI application to wrap.
            manager (TenancyManager): Resolves, validates and serves the
                                      tenant connections.
        """
        self.app = app
        self.manager = manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        try:
            tenant_id = self.manager.resolver(scope, self.manager.options)
            await self.manager.validate_tenant(tenant_id)
        except TenantResolutionError as exc:
            logger.debug(f"Rejected request without tenant: {exc}")
            await self.reject(scope, receive, send, status.HTTP_400_BAD_REQUEST, str(exc))
            return
        except TenantValidationError as exc:
            await self.reject(scope, receive, send, status.HTTP_403_FORBIDDEN, str(exc))
            return

        scope.setdefault("state", {})["tenant_id"] = tenant_id
        with with_tenant(tenant_id, validated=True):
            await self.app(scope, receive, send)

    async def reject(
        self, scope: Scope, receive: Receive, send: Send, status_code: int, detail: str
    ) -> None:
        if scope["type"] == "websocket":
            websocket = WebSocket(scope=scope, receive=receive, send=send)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=detail)
            return
        with JSONResponse.with_transform_kwargs({"json_encode_fn": orjson.dumps}):
            response = JSONResponse({"detail": detail}, status_code=status_code)
        await response(scope, receive, send)


__all__ = ["TenancyMiddleware"]
