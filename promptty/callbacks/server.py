"""Loopback HTTP ingress the running agent calls back into."""

import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from aiohttp import web

from ..exceptions import ConfigurationError
from ..utils.constants import DEFAULT_CALLBACK_HOST, DEFAULT_CALLBACK_PORT
from .handler import CallbackHandler, CallbackResult

logger = structlog.get_logger()

HANDLER_KEY = web.AppKey("callback_handler", CallbackHandler)

_LOOPBACK_HOSTS = {"127.0.0.1", "::1", "localhost"}


def _respond(result: CallbackResult) -> web.Response:
    return web.json_response(result.body, status=result.status)


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body"}),
            content_type="application/json",
        )


async def health(request: web.Request) -> web.Response:
    return web.json_response(
        {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
    )


async def post_callback(request: web.Request) -> web.Response:
    payload = await _read_json(request)
    return _respond(await request.app[HANDLER_KEY].post_update(payload))


async def post_message(request: web.Request) -> web.Response:
    payload = await _read_json(request)
    return _respond(await request.app[HANDLER_KEY].send_message(payload))


async def get_channels(request: web.Request) -> web.Response:
    session_id = request.query.get("session_id")
    return _respond(await request.app[HANDLER_KEY].list_channels(session_id))


def create_callback_app(handler: CallbackHandler) -> web.Application:
    app = web.Application()
    app[HANDLER_KEY] = handler
    app.router.add_get("/health", health)
    app.router.add_post("/callback", post_callback)
    app.router.add_post("/message", post_message)
    app.router.add_get("/channels", get_channels)
    return app


class CallbackServer:
    """Runs the ingress app on a loopback address."""

    def __init__(
        self,
        handler: CallbackHandler,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
    ):
        if host not in _LOOPBACK_HOSTS:
            raise ConfigurationError(f"Callback server must bind to loopback, got {host}")
        self.handler = handler
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(create_callback_app(self.handler), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info("Callback server started (localhost only)", host=self.host, port=self.port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Callback server stopped")
