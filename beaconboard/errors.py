"""Error taxonomy. Each error carries the short token sent back to the client."""

from __future__ import annotations


class BoardError(Exception):
    token = "error"
    status = 500

    def __init__(self, message: str | None = None, *, token: str | None = None):
        super().__init__(message or token or self.token)
        if token is not None:
            self.token = token


class ClientProtocolError(BoardError):
    """Malformed symbol, empty buffer, or commit before the identity handshake."""

    token = "bad"
    status = 400


class SymbolError(ClientProtocolError):
    token = "bad"


class StaleSessionError(BoardError):
    """Session evicted or handshake outside the freshness window; restart from /start."""

    token = "stale"
    status = 409


class StorageError(BoardError):
    token = "db"
    status = 503


class CapacityError(BoardError):
    token = "busy"
    status = 503
