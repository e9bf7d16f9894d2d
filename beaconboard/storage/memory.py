"""In-memory store (used when SQLite is disabled, and in tests)."""

from __future__ import annotations

import threading
import time
from dataclasses import replace

from beaconboard.storage.records import SCORE_COLUMNS, FieldUpdate, ScoreRecord, apply_update


class MemoryStore:
    def __init__(self):
        self._rows: dict[str, ScoreRecord] = {}
        self._lock = threading.Lock()

    def init(self) -> None:
        pass

    def close(self) -> None:
        pass

    def ping(self) -> None:
        pass

    def merge(
        self,
        key: str,
        default_name: str,
        updates: list[FieldUpdate],
        previous_key: str | None = None,
        dedupe_name: bool = False,
    ) -> list[str]:
        with self._lock:
            # Work on copies so a failure mid-way leaves the rows untouched.
            rows = {k: replace(v) for k, v in self._rows.items()}
            cur = rows.get(key) or ScoreRecord(user_id=key, display_name=default_name)
            for upd in updates:
                apply_update(cur, upd)
            cur.updated_at = time.time()
            rows[key] = cur

            superseded = []
            if previous_key and previous_key != key and previous_key in rows:
                superseded.append(previous_key)
            if dedupe_name:
                for k, r in rows.items():
                    if k != key and k not in superseded and r.display_name == cur.display_name and r.world_id == cur.world_id:
                        superseded.append(k)
            for k in superseded:
                old = rows.pop(k)
                for col in SCORE_COLUMNS:
                    setattr(cur, col, max(getattr(cur, col), getattr(old, col)))

            self._rows = rows
            return superseded

    def get(self, key: str) -> ScoreRecord | None:
        with self._lock:
            r = self._rows.get(key)
            return replace(r) if r else None

    def top(self, limit: int = 50, world_id: str | None = None) -> list[ScoreRecord]:
        with self._lock:
            vals = [replace(r) for r in self._rows.values() if world_id is None or r.world_id == world_id]
        vals.sort(key=lambda r: (r.total_ms, r.counter), reverse=True)
        return vals[: int(limit)]

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._rows.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            n = len(self._rows)
            self._rows = {}
            return n
