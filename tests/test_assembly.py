"""Reset/append/commit transitions against an in-memory store."""

import asyncio
import time

import pytest
from conftest import feed, handshake

from beaconboard.config import ServerConfig
from beaconboard.errors import ClientProtocolError, StaleSessionError, StorageError
from beaconboard.ingest.commit import FieldKind
from beaconboard.storage.memory import MemoryStore

C = "ip:10.0.0.1"


class FlakyStore(MemoryStore):
    def __init__(self):
        super().__init__()
        self.fail = False

    def merge(self, *args, **kwargs):
        if self.fail:
            raise StorageError("store down")
        return super().merge(*args, **kwargs)


@pytest.fixture
def asm_store(make_assembler):
    return make_assembler(ServerConfig(sqlite_enabled=False))


async def commit_value(asm, kind, value):
    feed(asm, C, kind, asm.alphabet.encode_number(value))
    await asm.commit(C, kind)


async def commit_name(asm, name):
    feed(asm, C, FieldKind.NAME, asm.alphabet.encode_text(name))
    await asm.commit(C, FieldKind.NAME)


async def play_scenario(asm):
    handshake(asm, C)
    await asm.commit_world(C, "Arena")
    await commit_name(asm, "Hero")
    await commit_value(asm, FieldKind.TIME, 5000)
    await commit_value(asm, FieldKind.COUNTER, 3)


async def test_full_scenario_builds_one_row(asm_store):
    asm, store = asm_store
    await play_scenario(asm)

    rows = store.top(10)
    assert len(rows) == 1
    row = rows[0]
    assert row.user_id == "fp_AAAAAAAA"
    assert (row.display_name, row.world_id, row.total_ms, row.counter) == ("Hero", "Arena", 5000, 3)


async def test_time_never_decreases(asm_store):
    asm, store = asm_store
    await play_scenario(asm)
    await commit_value(asm, FieldKind.TIME, 3000)
    assert store.get("fp_AAAAAAAA").total_ms == 5000


async def test_rename_replaces_immediately(asm_store):
    asm, store = asm_store
    await play_scenario(asm)
    await commit_name(asm, "Champ")
    row = store.get("fp_AAAAAAAA")
    assert row.display_name == "Champ"
    assert (row.total_ms, row.counter) == (5000, 3)


@pytest.mark.parametrize("order", [[10, 40, 20], [40, 10, 20], [20, 10, 40]])
async def test_monotonic_fields_converge_to_max(asm_store, order):
    asm, store = asm_store
    handshake(asm, C)
    for v in order:
        await commit_value(asm, FieldKind.TIME, v)
        await commit_value(asm, FieldKind.COUNTER, v)
    row = store.get("fp_AAAAAAAA")
    assert row.total_ms == 40
    assert row.counter == 40


async def test_counter_replace_policy(make_assembler):
    asm, store = make_assembler(ServerConfig(sqlite_enabled=False, counter_policy="replace"))
    handshake(asm, C)
    await commit_value(asm, FieldKind.COUNTER, 9)
    await commit_value(asm, FieldKind.COUNTER, 2)
    assert store.get("fp_AAAAAAAA").counter == 2


async def test_commit_clears_buffer(asm_store):
    asm, _ = asm_store
    handshake(asm, C)
    await commit_value(asm, FieldKind.TIME, 5000)
    assert asm.sessions.get(C).time_buf == ""
    with pytest.raises(ClientProtocolError) as exc:
        await asm.commit(C, FieldKind.TIME)
    assert exc.value.token == "empty"


async def test_empty_commit_leaves_storage_unchanged(asm_store):
    asm, store = asm_store
    handshake(asm, C)
    with pytest.raises(ClientProtocolError):
        await asm.commit(C, FieldKind.NAME)
    assert store.top(10) == []


async def test_appends_beyond_cap_are_dropped(asm_store):
    asm, _ = asm_store
    handshake(asm, C)
    feed(asm, C, FieldKind.NAME, asm.alphabet.encode_text("A" * 24 + "BCD"))
    assert asm.sessions.get(C).name_buf == "A" * 24

    feed(asm, C, FieldKind.IDENTITY, [1, 1, 1])
    assert asm.who(C) == "AAAAAAAA"


async def test_invalid_symbol_index_rejected(asm_store):
    asm, _ = asm_store
    with pytest.raises(ClientProtocolError) as exc:
        asm.append(C, FieldKind.IDENTITY, 64)
    assert exc.value.token == "bad"


async def test_field_append_before_identity_rejected(asm_store):
    asm, _ = asm_store
    feed(asm, C, FieldKind.IDENTITY, [0, 0, 0])
    with pytest.raises(ClientProtocolError) as exc:
        asm.append(C, FieldKind.TIME, 1)
    assert exc.value.token == "noid"


async def test_commit_without_session_is_stale(asm_store):
    asm, _ = asm_store
    with pytest.raises(StaleSessionError):
        await asm.commit(C, FieldKind.TIME)


async def test_commit_with_partial_identity_is_rejected(asm_store):
    asm, _ = asm_store
    feed(asm, C, FieldKind.IDENTITY, [0, 0, 0])
    with pytest.raises(ClientProtocolError) as exc:
        await asm.commit(C, FieldKind.IDENTITY)
    assert exc.value.token == "noid"


async def test_commit_after_ttl_is_stale(asm_store, clock):
    asm, store = asm_store
    handshake(asm, C)
    feed(asm, C, FieldKind.TIME, asm.alphabet.encode_number(5000))
    clock.advance(asm.config.session_ttl_sec + 1)
    with pytest.raises(StaleSessionError):
        await asm.commit(C, FieldKind.TIME)
    assert store.top(10) == []


async def test_freshness_guard(make_assembler, clock):
    asm, store = make_assembler(ServerConfig(sqlite_enabled=False, handshake_guard=True, handshake_window_sec=300))
    handshake(asm, C)
    clock.advance(200)
    await commit_value(asm, FieldKind.TIME, 10)

    clock.advance(200)
    feed(asm, C, FieldKind.TIME, asm.alphabet.encode_number(20))
    with pytest.raises(StaleSessionError):
        await asm.commit(C, FieldKind.TIME)

    # Re-asserting the handshake reopens the window.
    await asm.commit(C, FieldKind.IDENTITY)
    await asm.commit(C, FieldKind.TIME)
    assert store.get("fp_AAAAAAAA").total_ms == 20


async def test_guard_disabled_by_default(asm_store, clock):
    asm, store = asm_store
    handshake(asm, C)
    clock.advance(500)
    await commit_value(asm, FieldKind.TIME, 10)
    assert store.get("fp_AAAAAAAA").total_ms == 10


async def test_storage_failure_keeps_buffer_for_retry(make_assembler):
    flaky = FlakyStore()
    asm, _ = make_assembler(ServerConfig(sqlite_enabled=False), flaky)
    handshake(asm, C)
    feed(asm, C, FieldKind.TIME, asm.alphabet.encode_number(5000))

    flaky.fail = True
    with pytest.raises(StorageError):
        await asm.commit(C, FieldKind.TIME)
    assert asm.sessions.get(C).time_buf != ""
    assert flaky.top(10) == []

    flaky.fail = False
    await asm.commit(C, FieldKind.TIME)
    assert flaky.get("fp_AAAAAAAA").total_ms == 5000


async def test_identity_commit_creates_row_and_keeps_buffer(asm_store):
    asm, store = asm_store
    handshake(asm, C, "QWERTYUI")
    await asm.commit(C, FieldKind.IDENTITY)
    assert asm.who(C) == "QWERTYUI"
    row = store.get("fp_QWERTYUI")
    assert row.display_name == "Player-QWERTYUI"
    assert row.total_ms == 0


async def test_identity_reset_starts_new_handshake(asm_store):
    asm, store = asm_store
    handshake(asm, C)
    await commit_value(asm, FieldKind.TIME, 7)
    asm.reset(C, FieldKind.IDENTITY)
    assert asm.who(C) == ""
    handshake(asm, C, "BBBBBBBB")
    await commit_value(asm, FieldKind.TIME, 9)
    assert store.get("fp_AAAAAAAA").total_ms == 7
    assert store.get("fp_BBBBBBBB").total_ms == 9


async def test_sessions_are_isolated(asm_store):
    asm, store = asm_store
    handshake(asm, "ip:a", "AAAAAAAA")
    handshake(asm, "ip:b", "BBBBBBBB")
    feed(asm, "ip:a", FieldKind.TIME, asm.alphabet.encode_number(11))
    feed(asm, "ip:b", FieldKind.TIME, asm.alphabet.encode_number(22))
    await asm.commit("ip:b", FieldKind.TIME)
    await asm.commit("ip:a", FieldKind.TIME)
    assert store.get("fp_AAAAAAAA").total_ms == 11
    assert store.get("fp_BBBBBBBB").total_ms == 22


async def test_values_saturate_at_cap(make_assembler):
    asm, store = make_assembler(ServerConfig(sqlite_enabled=False, value_cap=1000))
    handshake(asm, C)
    feed(asm, C, FieldKind.TIME, [63] * 10)
    await asm.commit(C, FieldKind.TIME)
    assert store.get("fp_AAAAAAAA").total_ms == 1000


class SlowStore(MemoryStore):
    def merge(self, *args, **kwargs):
        time.sleep(0.2)
        return super().merge(*args, **kwargs)


async def test_append_during_inflight_commit_is_kept(make_assembler):
    asm, store = make_assembler(ServerConfig(sqlite_enabled=False), SlowStore())
    handshake(asm, C)
    asm.append(C, FieldKind.TIME, 5)

    task = asyncio.create_task(asm.commit(C, FieldKind.TIME))
    await asyncio.sleep(0.05)
    asm.append(C, FieldKind.TIME, 7)
    await task

    assert store.get("fp_AAAAAAAA").total_ms == 5
    assert asm.sessions.get(C).time_buf == "H"
    await asm.commit(C, FieldKind.TIME)
    assert store.get("fp_AAAAAAAA").total_ms == 7


async def test_commits_from_unknown_clients_allocate_no_locks(asm_store):
    asm, _ = asm_store
    for i in range(1000):
        with pytest.raises(StaleSessionError):
            await asm.commit(f"sid:{i}", FieldKind.TIME)
        with pytest.raises(StaleSessionError):
            await asm.commit_world(f"sid:{i}", "Arena")
    assert asm.sessions.lock_count == 0


async def test_sweep_drops_locks_without_session(asm_store):
    asm, _ = asm_store
    asm.sessions.lock("sid:gone")
    assert asm.sessions.lock_count == 1
    asm.sessions.sweep()
    assert asm.sessions.lock_count == 0


async def test_identity_commit_with_name(asm_store):
    asm, store = asm_store
    handshake(asm, C)
    await asm.commit(C, FieldKind.IDENTITY, name="  Hero ")
    assert store.get("fp_AAAAAAAA").display_name == "Hero"
    assert asm.sessions.get(C).committed_name == "Hero"
