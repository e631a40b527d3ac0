from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Litestar, Request, get
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .gateway import PROXY_PATH, ProxyGateway

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send


prometheus_config = PrometheusConfig(app_name="rangeseek", prefix="rangeseek")


def create_app(gateway: ProxyGateway | None = None) -> Litestar:
    """Create the range proxy ASGI application."""
    proxy = gateway or ProxyGateway.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    # Mounted as raw ASGI so OPTIONS reaches the gateway instead of
    # Litestar's generated preflight handler.
    @asgi(path=PROXY_PATH, is_mount=True, copy_scope=True)
    async def proxy_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        response = await proxy.handle(request)
        asgi_response = response.to_asgi_response(
            None, request, is_head_response=request.method == "HEAD"
        )
        await asgi_response(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await proxy.startup()

    async def shutdown(app: Litestar) -> None:
        await proxy.shutdown()

    return Litestar(
        route_handlers=[health, proxy_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        middleware=[prometheus_config.middleware],
    )


app = create_app()
