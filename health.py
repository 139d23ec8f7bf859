# -*- coding: utf-8 -*-
"""Tiny HTTP endpoint so uptime monitors (and free hosts) can tell the bot is alive."""
import logging
import time
from typing import Callable, Dict

from aiohttp import web

logger = logging.getLogger('health')

STATUS_PROVIDER_KEY = web.AppKey('status_provider', Callable[[], Dict])
STARTED_AT_KEY = web.AppKey('started_at', float)


async def index(request: web.Request) -> web.Response:
    return web.Response(text='🤖 PZ Restart Bot is running!')


async def health(request: web.Request) -> web.Response:
    status = request.app[STATUS_PROVIDER_KEY]()
    return web.json_response({
        'status': 'ok',
        'uptime': time.monotonic() - request.app[STARTED_AT_KEY],
        'onlinePlayers': status.get('online_players', 0),
        'restartInProgress': status.get('restart_in_progress', False),
    })


def create_health_app(status_provider: Callable[[], Dict]) -> web.Application:
    """status_provider returns {'online_players': int, 'restart_in_progress': bool}."""
    app = web.Application()
    app[STATUS_PROVIDER_KEY] = status_provider
    app[STARTED_AT_KEY] = time.monotonic()
    app.router.add_get('/', index)
    app.router.add_get('/health', health)
    return app


async def start_health_server(app: web.Application, port: int, host: str = '0.0.0.0') -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Web server running on port {port}")
    return runner
