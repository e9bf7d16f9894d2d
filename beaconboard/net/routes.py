"""HTTP handlers for the symbol protocol and the leaderboard reads.

Every protocol call is a body-less GET answered with ``ok`` or a short token:

  /b/{k} /b/reset /b/commit    identity (fingerprint)
  /n/{k} /n/reset /n/commit    display name
  /t/{k} /t/reset /t/commit    elapsed time (ms)
  /c/{k} /c/reset /c/commit    counter (beans)
  /w/commit?world=...          world tag
"""

from __future__ import annotations

import asyncio
import hmac
import math

from aiohttp import web

from beaconboard.errors import ClientProtocolError
from beaconboard.ingest.commit import FieldKind, clean_name, clean_world
from beaconboard.log import get_logger

log = get_logger(__name__)

PROTOCOL_ROUTE = "proto:"

_PREFIXES = {
    "b": FieldKind.IDENTITY,
    "n": FieldKind.NAME,
    "t": FieldKind.TIME,
    "c": FieldKind.COUNTER,
}

_NO_STORE = {"Cache-Control": "no-store"}


def text(body: str, status: int = 200, headers: dict[str, str] | None = None) -> web.Response:
    return web.Response(text=body + "\n" if not body.endswith("\n") else body, status=status, headers=headers)


def ok() -> web.Response:
    return text("ok")


def client_identity(request: web.Request, trust_forwarded: bool = True) -> str:
    sid = request.query.get("sid")
    if sid:
        return "sid:" + sid[:64]
    ip = ""
    if trust_forwarded:
        fwd = request.headers.get("X-Forwarded-For", "")
        if fwd:
            ip = fwd.split(",")[0].strip()
    if not ip:
        ip = request.remote or ""
    return "ip:" + ip


class ProtocolRoutes:
    def __init__(self, svc):
        self.svc = svc

    def _client(self, request: web.Request) -> str:
        return client_identity(request, self.svc.config.trust_forwarded)

    # -- symbol protocol ---------------------------------------------------

    async def start(self, request: web.Request) -> web.Response:
        self.svc.assembler.start(self._client(request))
        return ok()

    async def who(self, request: web.Request) -> web.Response:
        return text(self.svc.assembler.who(self._client(request)))

    def _kind(self, request: web.Request) -> FieldKind:
        return _PREFIXES[request.match_info["field"]]

    async def append(self, request: web.Request) -> web.Response:
        raw = request.match_info["k"]
        try:
            k = int(raw)
        except ValueError:
            raise ClientProtocolError(f"symbol index not an integer: {raw!r}", token="bad") from None
        self.svc.assembler.append(self._client(request), self._kind(request), k)
        return ok()

    async def reset(self, request: web.Request) -> web.Response:
        self.svc.assembler.reset(self._client(request), self._kind(request))
        return ok()

    async def commit(self, request: web.Request) -> web.Response:
        kind = self._kind(request)
        name = request.query.get("name") if kind is FieldKind.IDENTITY else None
        await self.svc.assembler.commit(self._client(request), kind, name=name)
        return ok()

    async def commit_world(self, request: web.Request) -> web.Response:
        await self.svc.assembler.commit_world(self._client(request), request.query.get("world"))
        return ok()

    async def update(self, request: web.Request) -> web.Response:
        q = request.query
        uid = q.get("uid", "")[:64]
        if not uid:
            return text("missing uid", status=400)
        name = clean_name(q.get("name"), self.svc.config.name_cap)
        try:
            raw_ms = float(q.get("ms", "0"))
        except ValueError:
            raw_ms = 0.0
        # Non-finite input (inf, nan, 1e400) counts as nothing sent.
        ms = int(raw_ms) if math.isfinite(raw_ms) else 0
        world = clean_world(q.get("world"), self.svc.config.world_cap)
        mode = q.get("mode", "max").lower()
        saved = await self.svc.engine.direct_update(uid, name, ms, world, mode)
        return web.json_response({"ok": True, "uid": uid, "name": name, "savedMs": saved}, headers=_NO_STORE)

    # -- reads -------------------------------------------------------------

    async def leaderboard_json(self, request: web.Request) -> web.Response:
        rows = await self.svc.projector.json(request.query.get("limit"), request.query.get("world"))
        return web.json_response(rows, headers=_NO_STORE)

    async def leaderboard_txt(self, request: web.Request) -> web.Response:
        body = await self.svc.projector.text(request.query.get("limit"), request.query.get("world"))
        return web.Response(text=body, content_type="text/plain", charset="utf-8", headers=_NO_STORE)

    async def healthz(self, _: web.Request) -> web.Response:
        await asyncio.to_thread(self.svc.store.ping)
        return ok()

    # -- admin -------------------------------------------------------------

    async def admin_reset(self, request: web.Request) -> web.Response:
        expected = self.svc.config.admin_token
        if not expected:
            raise web.HTTPNotFound(text="admin disabled")
        got = request.headers.get("X-Admin-Token", "")
        if not hmac.compare_digest(got.encode(), expected.encode()):
            raise web.HTTPForbidden(text="forbidden")

        body = {}
        if request.can_read_body:
            try:
                body = await request.json()
            except ValueError:
                body = {}
        key = body.get("key") if isinstance(body, dict) else None
        if key:
            deleted = int(await asyncio.to_thread(self.svc.store.delete, str(key)))
        else:
            deleted = await asyncio.to_thread(self.svc.store.clear)
        log.warning("admin_reset", key=key, deleted=deleted)
        return web.json_response({"ok": True, "deleted": deleted})

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_get("/start", self.start, name=PROTOCOL_ROUTE + "start")
        router.add_get("/who", self.who, name=PROTOCOL_ROUTE + "who")
        for prefix in _PREFIXES:
            field_re = "{field:" + prefix + "}"
            router.add_get(f"/{field_re}/reset", self.reset, name=f"{PROTOCOL_ROUTE}{prefix}-reset")
            router.add_get(f"/{field_re}/commit", self.commit, name=f"{PROTOCOL_ROUTE}{prefix}-commit")
            router.add_get(f"/{field_re}/{{k}}", self.append, name=f"{PROTOCOL_ROUTE}{prefix}-append")
        router.add_get("/w/commit", self.commit_world, name=PROTOCOL_ROUTE + "w-commit")
        router.add_get("/update", self.update, name=PROTOCOL_ROUTE + "update")

        router.add_get("/leaderboard.json", self.leaderboard_json)
        router.add_get("/leaderboard.txt", self.leaderboard_txt)
        router.add_get("/healthz", self.healthz)
        router.add_post("/admin/reset", self.admin_reset)
