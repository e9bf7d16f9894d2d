"""Reset / append / commit transitions for the four symbol fields.

Per field the buffer is empty -> accumulating -> (commit) -> empty. Identity
is special: it is never cleared by a commit, because it is the key every other
field is written under; its commit re-asserts the handshake instead.

Policy:
  * resets never require an identity;
  * name/time/counter appends and all commits require a complete identity;
  * over-cap appends are dropped, not rejected;
  * a buffer is cleared only after the store confirmed the write.
"""

from __future__ import annotations

from beaconboard.config import ServerConfig
from beaconboard.errors import ClientProtocolError, StaleSessionError
from beaconboard.ingest.alphabet import Alphabet
from beaconboard.ingest.commit import CommitEngine, CommitResult, FieldKind, clean_name, clean_world
from beaconboard.ingest.sessions import ClientSession, SessionStore
from beaconboard.log import get_logger

log = get_logger(__name__)

_BUFFERS = {
    FieldKind.IDENTITY: "identity_buf",
    FieldKind.NAME: "name_buf",
    FieldKind.TIME: "time_buf",
    FieldKind.COUNTER: "counter_buf",
}


class Assembler:
    def __init__(self, sessions: SessionStore, engine: CommitEngine, alphabet: Alphabet, config: ServerConfig):
        self.sessions = sessions
        self.engine = engine
        self.alphabet = alphabet
        self.config = config
        self.caps = {
            FieldKind.IDENTITY: config.identity_len,
            FieldKind.NAME: config.name_cap,
            FieldKind.TIME: config.time_cap,
            FieldKind.COUNTER: config.counter_cap,
        }

    def _has_identity(self, s: ClientSession | None) -> bool:
        return s is not None and len(s.identity_buf) == self.config.identity_len

    # -- reset -------------------------------------------------------------

    def start(self, client: str) -> None:
        """Drop every buffer of ``client`` (fresh handshake)."""
        self.sessions.reset(client)

    def reset(self, client: str, kind: FieldKind) -> None:
        s = self.sessions.get_or_create(client)
        setattr(s, _BUFFERS[kind], "")
        if kind is FieldKind.IDENTITY:
            s.handshake_at = None
            s.bound_key = None
            s.committed_name = None
        self.sessions.touch(client)

    # -- append ------------------------------------------------------------

    def append(self, client: str, kind: FieldKind, index: int) -> None:
        c = self.alphabet.encode_symbol(index)

        if kind is FieldKind.IDENTITY:
            if self.alphabet.is_terminator(c):
                raise ClientProtocolError("terminator not allowed in identity", token="bad")
            s = self.sessions.get_or_create(client)
        else:
            s = self.sessions.get(client)
            if not self._has_identity(s):
                raise ClientProtocolError("append before identity handshake", token="noid")

        attr = _BUFFERS[kind]
        buf = getattr(s, attr)
        if len(buf) >= self.caps[kind] or (buf and self.alphabet.is_terminator(buf[-1])):
            log.debug("symbol_dropped", client=client, field=kind.value, cap=self.caps[kind])
        else:
            buf += c
            setattr(s, attr, buf)
            if kind is FieldKind.IDENTITY and len(buf) == self.config.identity_len:
                s.handshake_at = self.sessions.now()
        self.sessions.touch(client)

    # -- commit ------------------------------------------------------------

    def _checked(self, client: str, guard: bool = True) -> ClientSession:
        s = self.sessions.get(client)
        if s is None:
            raise StaleSessionError("no live session", token="stale")
        if not self._has_identity(s):
            raise ClientProtocolError("commit before identity handshake", token="noid")
        if guard and self.config.handshake_guard:
            if s.handshake_at is None or self.sessions.now() - s.handshake_at > self.config.handshake_window_sec:
                raise StaleSessionError("handshake outside freshness window", token="stale")
        return s

    def _decode(self, kind: FieldKind, buf: str):
        if kind is FieldKind.NAME:
            return clean_name(self.alphabet.decode_text(buf, self.config.name_cap), self.config.name_cap)
        return self.alphabet.decode_sequence(buf, self.caps[kind], self.config.value_cap)

    def _live(self, client: str) -> None:
        # Checked before taking the lock so unknown clients never allocate one.
        if self.sessions.get(client) is None:
            raise StaleSessionError("no live session", token="stale")

    async def _write(self, client: str, s: ClientSession, kind: FieldKind, value) -> CommitResult:
        name = value if kind is FieldKind.NAME else s.committed_name
        world = value if kind is FieldKind.WORLD else s.world_tag
        res = await self.engine.commit_field(s.identity_buf, kind, value, world, name, s.bound_key)
        s.bound_key = res.key
        if kind is FieldKind.NAME:
            s.committed_name = value
        elif kind is FieldKind.WORLD:
            s.world_tag = value
        self.sessions.touch(client)
        log.info("field_committed", client=client, field=kind.value, key=res.key)
        return res

    async def commit(self, client: str, kind: FieldKind, name: str | None = None) -> CommitResult:
        """Commit one field. ``name`` is only honoured on the identity commit,
        where it sets the display name in the same call."""
        self._live(client)
        async with self.sessions.lock(client):
            # The identity commit is what re-opens the freshness window.
            s = self._checked(client, guard=kind is not FieldKind.IDENTITY)

            if kind is FieldKind.IDENTITY:
                res = await self._write(client, s, kind, None)
                s.handshake_at = self.sessions.now()
                if name:
                    res = await self._write(client, s, FieldKind.NAME, clean_name(name, self.config.name_cap))
                return res

            attr = _BUFFERS[kind]
            buf = getattr(s, attr)
            if not buf or self.alphabet.is_terminator(buf[0]):
                raise ClientProtocolError(f"{kind.value} buffer empty", token="empty")
            value = self._decode(kind, buf)

            res = await self._write(client, s, kind, value)

            # Confirmed; only now is the buffer consumed. Symbols appended
            # while the write was in flight stay for the next commit.
            cur = getattr(s, attr)
            if cur.startswith(buf):
                setattr(s, attr, cur[len(buf):])
            return res

    async def commit_world(self, client: str, world: str | None) -> CommitResult:
        self._live(client)
        async with self.sessions.lock(client):
            s = self._checked(client)
            return await self._write(client, s, FieldKind.WORLD, clean_world(world, self.config.world_cap))

    def who(self, client: str) -> str:
        s = self.sessions.get(client)
        if s is None:
            return ""
        return s.identity_buf[: self.config.identity_len]
