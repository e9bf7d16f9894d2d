"""Ranked leaderboard reads + rendering."""

from __future__ import annotations

import asyncio
from typing import Any

from beaconboard.storage.records import ScoreRecord


def ms_to_str(total_ms: int) -> str:
    """``HH:MM:SS:mmm``; hours widen past two digits as needed."""
    ms = max(0, int(total_ms))
    hours, ms = divmod(ms, 3_600_000)
    mins, ms = divmod(ms, 60_000)
    secs, ms = divmod(ms, 1000)
    return f"{hours:02d}:{mins:02d}:{secs:02d}:{ms:03d}"


def render_line(rec: ScoreRecord) -> str:
    return f"[{rec.display_name}] : {ms_to_str(rec.total_ms)} | {rec.counter}"


def render_text(rows: list[ScoreRecord]) -> str:
    return "".join(render_line(r) + "\n" for r in rows)


def render_json(rows: list[ScoreRecord]) -> list[dict[str, Any]]:
    return [
        {
            "rank": i,
            "displayName": r.display_name,
            "worldId": r.world_id,
            "totalElapsedMs": r.total_ms,
            "counterValue": r.counter,
        }
        for i, r in enumerate(rows, 1)
    ]


class LeaderboardProjector:
    def __init__(self, store, default_limit: int = 50, max_limit: int = 2000):
        self.store = store
        self.default_limit = default_limit
        self.max_limit = max_limit

    def clamp_limit(self, limit: Any) -> int:
        try:
            n = int(limit)
        except (TypeError, ValueError):
            n = self.default_limit
        return max(1, min(n, self.max_limit))

    async def top(self, limit: Any = None, world: str | None = None) -> list[ScoreRecord]:
        """Rows by total time desc, then counter desc. Order among exact ties is unspecified."""
        return await asyncio.to_thread(self.store.top, self.clamp_limit(limit), world or None)

    async def text(self, limit: Any = None, world: str | None = None) -> str:
        return render_text(await self.top(limit, world))

    async def json(self, limit: Any = None, world: str | None = None) -> list[dict[str, Any]]:
        return render_json(await self.top(limit, world))
