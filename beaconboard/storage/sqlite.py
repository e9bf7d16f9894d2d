"""SQLite persistence for the leaderboard."""

from __future__ import annotations

import sqlite3
import threading
import time

from beaconboard.errors import StorageError
from beaconboard.storage.records import COLUMNS, SCORE_COLUMNS, FieldUpdate, MergePolicy, ScoreRecord

_SELECT = "SELECT user_id, display_name, world_id, total_ms, counter, updated_at FROM scores"


def _row(r) -> ScoreRecord:
    return ScoreRecord(
        user_id=r[0],
        display_name=r[1],
        world_id=r[2],
        total_ms=int(r[3]),
        counter=int(r[4]),
        updated_at=float(r[5]),
    )


class SqliteStore:
    def __init__(self, path: str):
        self.path = path
        self.conn: sqlite3.Connection | None = None
        # Calls arrive from worker threads; one connection, serialized.
        self._lock = threading.Lock()

    def init(self) -> None:
        try:
            self.conn = sqlite3.connect(self.path, check_same_thread=False)
            with self.conn:
                self.conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS scores (
                      user_id TEXT PRIMARY KEY,
                      display_name TEXT NOT NULL,
                      world_id TEXT,
                      total_ms INTEGER NOT NULL DEFAULT 0,
                      counter INTEGER NOT NULL DEFAULT 0,
                      updated_at REAL NOT NULL
                    )
                    """
                )
                self.conn.execute("CREATE INDEX IF NOT EXISTS idx_scores_world ON scores(world_id)")
        except sqlite3.Error as e:
            raise StorageError(f"sqlite init failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def _conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise StorageError("store not initialized")
        return self.conn

    def ping(self) -> None:
        with self._lock:
            try:
                self._conn().execute("SELECT 1").fetchone()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    def merge(
        self,
        key: str,
        default_name: str,
        updates: list[FieldUpdate],
        previous_key: str | None = None,
        dedupe_name: bool = False,
    ) -> list[str]:
        values = {"display_name": default_name, "world_id": None, "total_ms": 0, "counter": 0}
        sets = []
        for upd in updates:
            values[upd.column] = upd.value
            if upd.policy is MergePolicy.MAX:
                sets.append(f"{upd.column}=MAX(scores.{upd.column}, excluded.{upd.column})")
            else:
                sets.append(f"{upd.column}=excluded.{upd.column}")
        sets.append("updated_at=excluded.updated_at")

        with self._lock:
            conn = self._conn()
            try:
                with conn:
                    conn.execute(
                        f"""
                        INSERT INTO scores ({", ".join(COLUMNS)}, user_id, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        ON CONFLICT(user_id) DO UPDATE SET {", ".join(sets)}
                        """,
                        (*(values[c] for c in COLUMNS), key, time.time()),
                    )

                    superseded = []
                    if previous_key and previous_key != key:
                        if conn.execute("SELECT 1 FROM scores WHERE user_id=?", (previous_key,)).fetchone():
                            superseded.append(previous_key)
                    if dedupe_name:
                        name, world = conn.execute(
                            "SELECT display_name, world_id FROM scores WHERE user_id=?", (key,)
                        ).fetchone()
                        cur = conn.execute(
                            "SELECT user_id FROM scores WHERE display_name=? AND world_id IS ? AND user_id<>?",
                            (name, world, key),
                        )
                        superseded.extend(r[0] for r in cur.fetchall() if r[0] not in superseded)

                    for old in superseded:
                        self._absorb(conn, key, old)
                    return superseded
            except sqlite3.Error as e:
                raise StorageError(f"merge failed for {key}: {e}") from e

    @staticmethod
    def _absorb(conn: sqlite3.Connection, key: str, old: str) -> None:
        sets = ", ".join(
            f"{c}=MAX({c}, (SELECT {c} FROM scores WHERE user_id=?))" for c in SCORE_COLUMNS
        )
        conn.execute(f"UPDATE scores SET {sets} WHERE user_id=?", (*(old for _ in SCORE_COLUMNS), key))
        conn.execute("DELETE FROM scores WHERE user_id=?", (old,))

    def get(self, key: str) -> ScoreRecord | None:
        with self._lock:
            try:
                r = self._conn().execute(f"{_SELECT} WHERE user_id=?", (key,)).fetchone()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
        return _row(r) if r else None

    def top(self, limit: int = 50, world_id: str | None = None) -> list[ScoreRecord]:
        sql = _SELECT
        args: list = []
        if world_id is not None:
            sql += " WHERE world_id=?"
            args.append(world_id)
        sql += " ORDER BY total_ms DESC, counter DESC LIMIT ?"
        args.append(int(limit))
        with self._lock:
            try:
                rows = self._conn().execute(sql, args).fetchall()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
        return [_row(r) for r in rows]

    def delete(self, key: str) -> bool:
        with self._lock:
            conn = self._conn()
            try:
                with conn:
                    cur = conn.execute("DELETE FROM scores WHERE user_id=?", (key,))
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
        return cur.rowcount > 0

    def clear(self) -> int:
        with self._lock:
            conn = self._conn()
            try:
                with conn:
                    cur = conn.execute("DELETE FROM scores")
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
        return cur.rowcount
