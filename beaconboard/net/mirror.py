"""Best-effort push of the rendered leaderboard to a static host."""

from __future__ import annotations

import asyncio

import aiohttp

from beaconboard.board.projector import LeaderboardProjector
from beaconboard.log import get_logger

log = get_logger(__name__)


class LeaderboardMirror:
    def __init__(
        self,
        projector: LeaderboardProjector,
        url: str,
        interval_sec: float = 60.0,
        limit: int = 100,
        token: str | None = None,
    ):
        self.projector = projector
        self.url = url
        self.interval = float(interval_sec)
        self.limit = limit
        self.token = token
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def push_once(self, http: aiohttp.ClientSession) -> bool:
        headers = {"Content-Type": "text/plain; charset=utf-8", "Cache-Control": "no-store"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            body = await self.projector.text(self.limit)
            async with http.put(self.url, data=body.encode("utf-8"), headers=headers) as resp:
                if resp.status >= 400:
                    log.warning("mirror_rejected", url=self.url, status=resp.status)
                    return False
            return True
        except asyncio.CancelledError:
            raise
        except Exception:
            # Never propagates: the mirror must not affect ingestion.
            log.warning("mirror_failed", url=self.url, exc_info=True)
            return False

    async def _loop(self) -> None:
        timeout = aiohttp.ClientTimeout(total=max(5.0, self.interval / 2))
        async with aiohttp.ClientSession(timeout=timeout) as http:
            while self._running:
                await self.push_once(http)
                await asyncio.sleep(self.interval)
