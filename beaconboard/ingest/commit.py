"""Turn an assembled field into a store upsert.

Key derivation modes:

* ``identity``      -> ``fp_<identity>``
* ``identity_hash`` -> ``fp_<sha256(identity)[:16]>``
* ``world_name``    -> ``wn_<sha256(world NUL name)[:24]>`` once a name is
  known, else the identity key. Renames (and world changes) migrate the row.

Only a name commit migrates the previous row; a world change leaves the other
world's row in place. Every name commit also folds any other row with the same display name in the
same world into the current key.
"""

from __future__ import annotations

import asyncio
import enum
import hashlib
import re
from dataclasses import dataclass, field

from beaconboard.config import ServerConfig
from beaconboard.log import get_logger
from beaconboard.storage.records import FieldUpdate, MergePolicy

log = get_logger(__name__)


class FieldKind(str, enum.Enum):
    IDENTITY = "identity"
    NAME = "name"
    TIME = "time"
    COUNTER = "counter"
    WORLD = "world"


_WS = re.compile(r"\s+")
_CTRL = re.compile(r"[\x00-\x1f\x7f]")


def clean_name(s: str | None, cap: int = 24) -> str:
    if not s:
        return "Player"
    s = _CTRL.sub(" ", str(s))
    s = _WS.sub(" ", s).strip()
    s = s[:cap].strip()
    return s or "Player"


def clean_world(s: str | None, cap: int = 64) -> str:
    if not s:
        return ""
    return _CTRL.sub("", str(s)).strip()[:cap]


def clamp_value(v: int, cap: int) -> int:
    return max(0, min(int(v), int(cap)))


def _digest(text: str, n: int) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:n]


def derive_key(mode: str, identity: str, world: str = "", name: str | None = None) -> str:
    if mode == "world_name" and name:
        return "wn_" + _digest(f"{world}\x00{name}", 24)
    if mode == "identity_hash":
        return "fp_" + _digest(identity, 16)
    return "fp_" + identity


@dataclass
class CommitResult:
    key: str
    superseded: list[str] = field(default_factory=list)


class CommitEngine:
    def __init__(self, store, config: ServerConfig):
        self.store = store
        self.config = config
        self.policies = {
            FieldKind.NAME: MergePolicy.REPLACE,
            FieldKind.WORLD: MergePolicy.REPLACE,
            FieldKind.TIME: MergePolicy.MAX,
            FieldKind.COUNTER: MergePolicy(config.counter_policy),
        }

    def _updates(self, kind: FieldKind, value, world: str) -> list[FieldUpdate]:
        cap = self.config.value_cap
        if kind is FieldKind.IDENTITY:
            return []
        if kind is FieldKind.NAME:
            ups = [FieldUpdate("display_name", value, self.policies[kind])]
            if world:
                ups.append(FieldUpdate("world_id", world, self.policies[FieldKind.WORLD]))
            return ups
        if kind is FieldKind.WORLD:
            return [FieldUpdate("world_id", value or None, self.policies[kind])]
        if kind is FieldKind.TIME:
            return [FieldUpdate("total_ms", clamp_value(value, cap), self.policies[kind])]
        if kind is FieldKind.COUNTER:
            return [FieldUpdate("counter", clamp_value(value, cap), self.policies[kind])]
        raise ValueError(f"unknown field kind: {kind!r}")

    async def commit_field(
        self,
        identity: str,
        kind: FieldKind,
        value,
        world: str = "",
        name: str | None = None,
        bound_key: str | None = None,
    ) -> CommitResult:
        """Upsert one field for the session whose identity buffer is ``identity``.

        ``name`` is the display name the key should be derived from (the new
        name for a name commit, the session's last committed name otherwise);
        ``bound_key`` is the key the session wrote before. Only a name commit
        migrates it into the new key; a world change just lands on (or
        creates) that world's row. Raises StorageError.
        """
        key = derive_key(self.config.key_mode, identity, world, name)
        updates = self._updates(kind, value, world)
        default_name = name or "Player-" + identity
        previous = None
        if kind is FieldKind.NAME and bound_key and bound_key != key:
            previous = bound_key

        superseded = await asyncio.to_thread(
            self.store.merge,
            key,
            default_name,
            updates,
            previous,
            kind is FieldKind.NAME,
        )
        if superseded:
            log.info("rows_reconciled", key=key, superseded=superseded, field=kind.value)
        log.debug("field_committed", key=key, field=kind.value)
        return CommitResult(key=key, superseded=list(superseded))

    async def direct_update(self, uid: str, name: str, ms: int, world: str, mode: str = "max") -> int:
        """Single-call update keyed by a client-computed uid."""
        policy = MergePolicy.REPLACE if mode == "set" else MergePolicy.MAX
        ms = clamp_value(ms, self.config.value_cap)
        updates = [
            FieldUpdate("display_name", name, MergePolicy.REPLACE),
            FieldUpdate("total_ms", ms, policy),
        ]
        if world:
            updates.append(FieldUpdate("world_id", world, MergePolicy.REPLACE))
        await asyncio.to_thread(self.store.merge, uid, name, updates)
        return ms
