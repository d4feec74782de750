from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Any

from aiohttp import web

from common.config import ConfigError, load_panel_config
from common.errors import PanelError, PreconditionFailure
from common.log import attach_log_buffer, setup_logging
from panel.session import PanelSession


class PanelWebDaemon:
    def __init__(self, config: dict[str, Any], session: PanelSession):
        self.logger = logging.getLogger("panel.web_daemon")
        self.config = config
        self.session = session
        self.stop_event = asyncio.Event()
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._init_task: asyncio.Task[None] | None = None
        self._shutdown_task: asyncio.Task[None] | None = None
        self._stopping = False
        self.app = web.Application()
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/api/status", self.api_status)
        self.app.router.add_get("/api/log", self.api_log)
        self.app.router.add_get("/api/config", self.api_config_get)
        self.app.router.add_post("/api/config", self.guard(self.api_config_set))
        self.app.router.add_post("/api/start", self.guard(self.api_start))
        self.app.router.add_post("/api/stop", self.guard(self.api_stop))
        self.app.router.add_post("/api/toggle", self.guard(self.api_toggle))
        self.app.router.add_post("/api/update", self.guard(self.api_update))
        self.app.router.add_post("/api/install", self.guard(self.api_install))
        self.app.router.add_post("/api/refresh", self.guard(self.api_refresh))

    def guard(self, handler):
        async def _wrapped(request: web.Request):
            try:
                return await handler(request)
            except ConfigError as exc:
                return web.json_response({"ok": False, "error": "invalid_config", "message": str(exc)}, status=400)
            except PreconditionFailure as exc:
                return self._error_response(exc, status=409)
            except PanelError as exc:
                return self._error_response(exc, status=500)

        return _wrapped

    def _error_response(self, exc: PanelError, status: int) -> web.Response:
        return web.json_response(
            {"ok": False, "error": exc.code, "message": str(exc), "agent": self.session.snapshot()},
            status=status,
        )

    async def _json_body(self, request: web.Request) -> dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            data = await request.json()
        except ValueError as exc:
            raise ConfigError("request body must be JSON") from exc
        if not isinstance(data, dict):
            raise ConfigError("request body must be a JSON object")
        return data

    async def api_status(self, _: web.Request) -> web.Response:
        return web.json_response({"ok": True, "agent": self.session.snapshot()})

    async def api_log(self, _: web.Request) -> web.Response:
        return web.json_response({"ok": True, "lines": self.session.log_lines()})

    async def api_config_get(self, _: web.Request) -> web.Response:
        return web.json_response(
            {
                "ok": True,
                "config": {
                    "port": self.session.port,
                    "name": self.session.binary_name,
                    "default_port": self.session.default_port,
                    "default_name": self.session.default_name,
                },
            }
        )

    async def api_config_set(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        agent = await self.session.reconfigure(port=data.get("port"), name=data.get("name"))
        return web.json_response({"ok": True, "agent": agent})

    async def api_start(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        agent = await self.session.start(port=data.get("port"), name=data.get("name"))
        return web.json_response({"ok": True, "agent": agent})

    async def api_stop(self, _: web.Request) -> web.Response:
        agent = await self.session.stop()
        return web.json_response({"ok": True, "agent": agent})

    async def api_toggle(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        running = data.get("running")
        if not isinstance(running, bool):
            raise ConfigError("running must be true or false")
        agent = await self.session.toggle(running, port=data.get("port"), name=data.get("name"))
        return web.json_response({"ok": True, "agent": agent})

    async def api_update(self, _: web.Request) -> web.Response:
        agent = await self.session.update()
        return web.json_response({"ok": True, "agent": agent})

    async def api_install(self, _: web.Request) -> web.Response:
        agent = await self.session.install()
        return web.json_response({"ok": True, "agent": agent})

    async def api_refresh(self, _: web.Request) -> web.Response:
        agent = await self.session.refresh()
        return web.json_response({"ok": True, "agent": agent})

    async def _initialize(self) -> None:
        try:
            await self.session.initialize(install=bool(self.config.get("auto_install", True)))
        except Exception as exc:
            self.logger.exception("agent initialization failed (web remains available): %s", exc)

    async def start(self) -> None:
        bind = self.config.get("web_console_bind", "127.0.0.1")
        port = int(self.config.get("web_console_port", 3002))
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, bind, port)
        await self.site.start()
        self.logger.info("panel listening on http://%s:%s", bind, port)
        self._init_task = asyncio.create_task(self._initialize(), name="panel-initialize")

    async def stop(self) -> None:
        if self._stopping:
            return
        self._stopping = True
        if self._init_task and not self._init_task.done():
            self._init_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._init_task
        if self.runner:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self.runner.cleanup(), timeout=5.0)
            self.runner = None
            self.site = None


def _install_signal_handlers(app: PanelWebDaemon) -> None:
    loop = asyncio.get_running_loop()

    async def _shutdown() -> None:
        try:
            await app.stop()
        finally:
            app.stop_event.set()

    def _trigger_shutdown() -> None:
        if app._shutdown_task and not app._shutdown_task.done():
            return
        app._shutdown_task = asyncio.create_task(_shutdown(), name="panel-web-daemon-shutdown")

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _trigger_shutdown)
        except NotImplementedError:
            signal.signal(sig, lambda *_: _trigger_shutdown())


async def _amain(config_path: str | None) -> None:
    cfg = load_panel_config(config_path)
    setup_logging(cfg["log_level"])
    log_buffer = attach_log_buffer(cfg["log_buffer_lines"])
    session = PanelSession.from_config(cfg, log_buffer=log_buffer)
    app = PanelWebDaemon(cfg, session)
    await app.start()
    _install_signal_handlers(app)
    await app.stop_event.wait()


def main() -> None:
    parser = argparse.ArgumentParser(description="Agent control panel web daemon")
    parser.add_argument("config", nargs="?", default=None, help="path to panel yaml config")
    args = parser.parse_args()
    asyncio.run(_amain(args.config))


if __name__ == "__main__":
    main()
