"""Buffer caps, session windows, key/merge policy, leaderboard limits."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

KEY_MODES = ("identity", "identity_hash", "world_name")


@dataclass
class ServerConfig:
    # Versions
    server_version: str = "0.1.0"

    # Network
    host: str = "0.0.0.0"
    port: int = 8080
    cors_allow_all: bool = True
    cors_allowed_origins: list[str] = field(default_factory=list)
    # Embedded clients usually sit behind a proxy; first X-Forwarded-For hop wins.
    trust_forwarded: bool = True

    # Persistence
    sqlite_enabled: bool = True
    sqlite_path: str = "leaderboard.sqlite3"

    # Sessions
    session_ttl_sec: float = 10 * 60.0
    sweep_interval_sec: float = 30.0
    max_sessions: int = 10_000

    # Freshness guard
    handshake_guard: bool = False
    handshake_window_sec: float = 5 * 60.0

    # Buffers (in symbols)
    identity_len: int = 8
    name_cap: int = 24
    time_cap: int = 32
    counter_cap: int = 16
    world_cap: int = 64

    # Decoding
    value_cap: int = 10**13
    strict_decoding: bool = True
    terminator: bool = False

    # Keys / merge policy
    key_mode: str = "identity"
    counter_policy: str = "max"

    # Leaderboard
    leaderboard_default_limit: int = 50
    leaderboard_max_limit: int = 2000

    # Rate limiting (per client identity)
    rate_per_sec: float = 20.0
    rate_burst: float = 60.0

    # Mirror
    mirror_url: str | None = None
    mirror_interval_sec: float = 60.0
    mirror_limit: int = 100
    mirror_token: str | None = None

    # Admin
    admin_token: str | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self):
        if self.key_mode not in KEY_MODES:
            raise ValueError(f"unknown key mode: {self.key_mode!r}")
        if self.counter_policy not in ("max", "replace"):
            raise ValueError(f"unknown counter policy: {self.counter_policy!r}")

    @staticmethod
    def _parse_bool(v: str | None, default: bool) -> bool:
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_int(v: str | None, default: int) -> int:
        if v is None:
            return default
        try:
            return int(v)
        except ValueError:
            return default

    @staticmethod
    def _parse_float(v: str | None, default: float) -> float:
        if v is None:
            return default
        try:
            return float(v)
        except ValueError:
            return default

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        cfg = cls()

        def s(name: str, default):
            return env.get(f"BOARD_{name}") or default

        def b(name: str, default: bool) -> bool:
            return cls._parse_bool(env.get(f"BOARD_{name}"), default)

        def i(name: str, default: int) -> int:
            return cls._parse_int(env.get(f"BOARD_{name}"), default)

        def f(name: str, default: float) -> float:
            return cls._parse_float(env.get(f"BOARD_{name}"), default)

        cfg.host = s("HOST", cfg.host)
        # PORT without prefix is what most PaaS hosts inject.
        cfg.port = cls._parse_int(env.get("BOARD_PORT") or env.get("PORT"), cfg.port)
        cfg.cors_allow_all = b("CORS_ALLOW_ALL", cfg.cors_allow_all)
        origins = env.get("BOARD_CORS_ORIGINS")
        if origins:
            cfg.cors_allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]
        cfg.trust_forwarded = b("TRUST_FORWARDED", cfg.trust_forwarded)

        cfg.sqlite_enabled = b("SQLITE", cfg.sqlite_enabled)
        cfg.sqlite_path = s("SQLITE_PATH", cfg.sqlite_path)

        cfg.session_ttl_sec = f("SESSION_TTL_SEC", cfg.session_ttl_sec)
        cfg.sweep_interval_sec = f("SWEEP_INTERVAL_SEC", cfg.sweep_interval_sec)
        cfg.max_sessions = i("MAX_SESSIONS", cfg.max_sessions)

        cfg.handshake_guard = b("HANDSHAKE_GUARD", cfg.handshake_guard)
        cfg.handshake_window_sec = f("HANDSHAKE_WINDOW_SEC", cfg.handshake_window_sec)

        cfg.identity_len = i("IDENTITY_LEN", cfg.identity_len)
        cfg.name_cap = i("NAME_CAP", cfg.name_cap)
        cfg.time_cap = i("TIME_CAP", cfg.time_cap)
        cfg.counter_cap = i("COUNTER_CAP", cfg.counter_cap)
        cfg.world_cap = i("WORLD_CAP", cfg.world_cap)

        cfg.value_cap = i("VALUE_CAP", cfg.value_cap)
        cfg.strict_decoding = b("STRICT_DECODING", cfg.strict_decoding)
        cfg.terminator = b("TERMINATOR", cfg.terminator)

        key_mode = s("KEY_MODE", cfg.key_mode).strip().lower()
        if key_mode in KEY_MODES:
            cfg.key_mode = key_mode
        counter_policy = s("COUNTER_POLICY", cfg.counter_policy).strip().lower()
        if counter_policy in ("max", "replace"):
            cfg.counter_policy = counter_policy

        cfg.leaderboard_default_limit = i("LEADERBOARD_LIMIT", cfg.leaderboard_default_limit)
        cfg.leaderboard_max_limit = i("LEADERBOARD_MAX_LIMIT", cfg.leaderboard_max_limit)

        cfg.rate_per_sec = f("RATE_PER_SEC", cfg.rate_per_sec)
        cfg.rate_burst = f("RATE_BURST", cfg.rate_burst)

        cfg.mirror_url = s("MIRROR_URL", cfg.mirror_url)
        cfg.mirror_interval_sec = f("MIRROR_INTERVAL_SEC", cfg.mirror_interval_sec)
        cfg.mirror_limit = i("MIRROR_LIMIT", cfg.mirror_limit)
        cfg.mirror_token = s("MIRROR_TOKEN", cfg.mirror_token)

        cfg.admin_token = s("ADMIN_TOKEN", cfg.admin_token)

        cfg.log_level = s("LOG_LEVEL", cfg.log_level).upper()
        cfg.log_json = b("LOG_JSON", cfg.log_json)
        return cfg
