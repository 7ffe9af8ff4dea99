from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from lilya.types import ASGIApp, Message, Receive, Scope, Send

    from tenantdb.core.tenancy.manager import TenancyManager


@dataclass
class TenancyLifespan:
    """
    Ties the tenant connections of a manager to the lifespan of an ASGI app.

    Startup opens the connection of the static `tenant_id` option, if one is
    configured, so a broken database fails the deployment instead of the first
    request. Shutdown closes every tenant connection.

    By default the lifespan scope is forwarded to `app` and the manager work is
    done right before the app reports `lifespan.startup.complete` or
    `lifespan.shutdown.complete`. A failure is reported in place of the
    completion message. With `handle_lifespan=True` the app never sees the
    lifespan scope and the messages are answered here.
    """

    app: ASGIApp
    manager: TenancyManager
    handle_lifespan: bool = False

    async def startup(self) -> None:
        if self.manager.options.tenant_id:
            await self.manager.connection()

    async def shutdown(self) -> None:
        await self.manager.close()

    async def run_step(self, step: str) -> Message:
        """
        Runs `startup` or `shutdown` and returns the message answering it.
        """
        try:
            await getattr(self, step)()
        except Exception as exc:
            logger.opt(exception=exc).error(f"Tenancy {step} failed.")
            return {"type": f"lifespan.{step}.failed", "message": str(exc)}
        return {"type": f"lifespan.{step}.complete"}

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "lifespan":
            await self.app(scope, receive, send)
            return

        if self.handle_lifespan:
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    reply = await self.run_step("startup")
                    await send(reply)
                    if reply["type"] == "lifespan.startup.failed":
                        return
                elif message["type"] == "lifespan.shutdown":
                    await send(await self.run_step("shutdown"))
                    return

        async def wrapped_send(message: Message) -> None:
            if message["type"] == "lifespan.startup.complete":
                message = await self.run_step("startup")
            elif message["type"] == "lifespan.shutdown.complete":
                message = await self.run_step("shutdown")
            await send(message)

        await self.app(scope, receive, wrapped_send)

    def __getattr__(self, key: str) -> Any:
        # Frameworks may read attributes like `router` from the wrapped app.
        if key == "app":
            raise AttributeError(key)
        return getattr(self.app, key)


__all__ = ["TenancyLifespan"]
