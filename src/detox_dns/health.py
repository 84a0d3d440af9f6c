"""Minimal HTTP liveness endpoint."""
from aiohttp import web
from .config import logger, HEALTH_HOST, HEALTH_PORT

LIVENESS_TEXT = "hi"


async def handle_root(request: web.Request) -> web.Response:
    return web.Response(text=LIVENESS_TEXT)


def create_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/", handle_root)
    return app


async def start_health_server(host: str = HEALTH_HOST, port: int = HEALTH_PORT) -> web.AppRunner:
    """
    Start the health endpoint in the running event loop.

    Returns:
        The AppRunner; call ``cleanup()`` on it at shutdown
    """
    runner = web.AppRunner(create_app(), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Health endpoint listening on http://{host}:{port}/")
    return runner
