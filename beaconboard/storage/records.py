"""Row shape + merge policies shared by the stores."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class MergePolicy(str, enum.Enum):
    REPLACE = "replace"
    MAX = "max"


# Writable columns. Anything else passed to a store is a programming error.
COLUMNS = ("display_name", "world_id", "total_ms", "counter")
SCORE_COLUMNS = ("total_ms", "counter")


@dataclass(frozen=True)
class FieldUpdate:
    column: str
    value: Any
    policy: MergePolicy = MergePolicy.REPLACE

    def __post_init__(self):
        if self.column not in COLUMNS:
            raise ValueError(f"unknown column: {self.column!r}")


@dataclass
class ScoreRecord:
    user_id: str
    display_name: str
    world_id: str | None = None
    total_ms: int = 0
    counter: int = 0
    updated_at: float = 0.0


def apply_update(rec: ScoreRecord, upd: FieldUpdate) -> None:
    cur = getattr(rec, upd.column)
    if upd.policy is MergePolicy.MAX:
        if cur is None or upd.value > cur:
            setattr(rec, upd.column, upd.value)
    else:
        setattr(rec, upd.column, upd.value)
