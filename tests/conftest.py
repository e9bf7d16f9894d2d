"""Shared fixtures: a controllable clock, configs, stores and a wired assembler."""

import pytest

from beaconboard.config import ServerConfig
from beaconboard.ingest.alphabet import Alphabet
from beaconboard.ingest.assembly import Assembler
from beaconboard.ingest.commit import CommitEngine, FieldKind
from beaconboard.ingest.sessions import SessionStore
from beaconboard.storage.memory import MemoryStore
from beaconboard.storage.sqlite import SqliteStore


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, sec: float) -> None:
        self.t += sec


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return ServerConfig(sqlite_path=str(tmp_path / "board.sqlite3"), rate_burst=10_000, rate_per_sec=10_000)


@pytest.fixture
def alphabet():
    return Alphabet()


@pytest.fixture
def memory_store():
    store = MemoryStore()
    store.init()
    return store


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteStore(str(tmp_path / "scores.sqlite3"))
    store.init()
    yield store
    store.close()


@pytest.fixture
def make_assembler(clock, alphabet):
    def _make(config: ServerConfig, store=None):
        store = store if store is not None else MemoryStore()
        sessions = SessionStore(config.session_ttl_sec, config.max_sessions, clock=clock)
        return Assembler(sessions, CommitEngine(store, config), alphabet, config), store

    return _make


def feed(asm: Assembler, client: str, kind: FieldKind, indices) -> None:
    for i in indices:
        asm.append(client, kind, i)


def handshake(asm: Assembler, client: str, identity: str = "AAAAAAAA") -> None:
    feed(asm, client, FieldKind.IDENTITY, asm.alphabet.encode_text(identity))
