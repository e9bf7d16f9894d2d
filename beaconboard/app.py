"""HTTP entrypoint for the symbol-stream leaderboard."""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Callable

from aiohttp import web

from beaconboard.board.projector import LeaderboardProjector
from beaconboard.config import ServerConfig
from beaconboard.errors import BoardError, StorageError
from beaconboard.ingest.alphabet import Alphabet
from beaconboard.ingest.assembly import Assembler
from beaconboard.ingest.commit import CommitEngine
from beaconboard.ingest.sessions import SessionStore
from beaconboard.log import configure_logging, get_logger
from beaconboard.net.mirror import LeaderboardMirror
from beaconboard.net.rate_limit import ClientQuotas
from beaconboard.net.routes import PROTOCOL_ROUTE, ProtocolRoutes, client_identity, text
from beaconboard.storage.memory import MemoryStore
from beaconboard.storage.sqlite import SqliteStore

log = get_logger(__name__)


class BoardService:
    def __init__(self, config: ServerConfig, clock: Callable[[], float] = time.monotonic, store=None):
        self.config = config
        self.server_id = str(uuid.uuid4())
        self.start_time = time.time()

        if store is not None:
            self.store = store
        elif self.config.sqlite_enabled:
            self.store = SqliteStore(self.config.sqlite_path)
        else:
            self.store = MemoryStore()

        self.alphabet = Alphabet(terminator=config.terminator, strict=config.strict_decoding)
        self.sessions = SessionStore(config.session_ttl_sec, config.max_sessions, clock=clock)
        self.engine = CommitEngine(self.store, config)
        self.assembler = Assembler(self.sessions, self.engine, self.alphabet, config)
        self.projector = LeaderboardProjector(
            self.store, config.leaderboard_default_limit, config.leaderboard_max_limit
        )
        self.quotas = ClientQuotas(config.rate_per_sec, config.rate_burst)
        self.mirror = (
            LeaderboardMirror(
                self.projector,
                config.mirror_url,
                interval_sec=config.mirror_interval_sec,
                limit=config.mirror_limit,
                token=config.mirror_token,
            )
            if config.mirror_url
            else None
        )

        self._running = False
        self._sweep_task: asyncio.Task | None = None

    async def start(self) -> None:
        self.store.init()
        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        if self.mirror:
            await self.mirror.start()
        log.info("service_started", store=type(self.store).__name__, key_mode=self.config.key_mode)

    async def stop(self) -> None:
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        if self.mirror:
            await self.mirror.stop()
        self.store.close()

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.sweep_interval_sec)
            self.sessions.sweep()
            self.quotas.prune(self.config.session_ttl_sec)

    def version_payload(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "serverVersion": self.config.server_version,
            "alphabetSize": self.alphabet.size,
            "identityLength": self.config.identity_len,
        }


def _cors_headers(config: ServerConfig, origin: str | None) -> dict[str, str]:
    if not origin:
        return {}
    if config.cors_allow_all:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    if origin in config.cors_allowed_origins:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    return {}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        origin = request.headers.get("Origin")
        headers = {
            **_cors_headers(request.app["config"], origin),
            "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type,X-Admin-Token",
            "Access-Control-Max-Age": "86400",
        }
        return web.Response(status=204, headers=headers)

    resp = await handler(request)
    for k, v in _cors_headers(request.app["config"], request.headers.get("Origin")).items():
        resp.headers[k] = v
    return resp


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except StorageError as e:
        log.error("storage_error", path=request.path, error=str(e), cause=repr(e.__cause__))
        return text(e.token, status=e.status)
    except BoardError as e:
        log.debug("request_rejected", path=request.path, token=e.token, error=str(e))
        return text(e.token, status=e.status)


@web.middleware
async def rate_limit_middleware(request: web.Request, handler):
    name = request.match_info.route.name or ""
    if name.startswith(PROTOCOL_ROUTE):
        svc: BoardService = request.app["svc"]
        if not svc.quotas.allow(client_identity(request, svc.config.trust_forwarded)):
            return text("slowdown", status=429)
    return await handler(request)


def create_app(config: ServerConfig, svc: BoardService | None = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware, error_middleware, rate_limit_middleware])
    svc = svc or BoardService(config)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    async def root(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "service": "beaconboard",
                **svc.version_payload(),
                "endpoints": {
                    "healthz": "/healthz",
                    "health": "/health",
                    "identity": "/b/{k}",
                    "name": "/n/{k}",
                    "time": "/t/{k}",
                    "counter": "/c/{k}",
                    "world": "/w/commit",
                    "leaderboardJson": "/leaderboard.json",
                    "leaderboardTxt": "/leaderboard.txt",
                },
            }
        )

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": time.time() - svc.start_time,
                "sessions": len(svc.sessions),
                **svc.version_payload(),
            }
        )

    async def preflight(_: web.Request):
        return web.Response(status=204)

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    ProtocolRoutes(svc).register(app.router)
    app.router.add_route("OPTIONS", "/{tail:.*}", preflight)

    return app


def main() -> None:
    config = ServerConfig.from_env()
    configure_logging(config.log_level, json=config.log_json)
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
