"""Symbol alphabet + base-N decoding.

Every symbol travels as an integer path segment (``/n/17``) and is stored in
the session buffers as its character. Numbers are base-N, most significant
symbol first, unsigned, and saturate at ``cap`` instead of wrapping.
"""

from __future__ import annotations

from typing import Iterable

from beaconboard.errors import SymbolError

SYMBOLS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
TERMINATOR = "~"
DEFAULT_CAP = 10**13


class Alphabet:
    def __init__(self, symbols: str = SYMBOLS, terminator: bool = False, strict: bool = True):
        if len(set(symbols)) != len(symbols):
            raise ValueError("alphabet symbols must be unique")
        if TERMINATOR in symbols:
            raise ValueError("terminator must not be part of the base alphabet")
        self.symbols = symbols
        self.base = len(symbols)
        self.terminator = TERMINATOR if terminator else None
        self.strict = strict
        self._index = {c: i for i, c in enumerate(symbols)}

    @property
    def size(self) -> int:
        """Number of valid symbol indices (base, plus one with the terminator)."""
        return self.base + (1 if self.terminator else 0)

    def encode_symbol(self, i: int) -> str:
        if not isinstance(i, int) or isinstance(i, bool) or i < 0 or i >= self.size:
            raise SymbolError(f"symbol index out of range: {i!r}")
        if i == self.base:
            return self.terminator
        return self.symbols[i]

    def decode_symbol(self, c: str) -> int | None:
        if self.terminator and c == self.terminator:
            return self.base
        return self._index.get(c)

    def is_terminator(self, c: str) -> bool:
        return self.terminator is not None and c == self.terminator

    def decode_sequence(self, symbols: str, max_len: int, cap: int = DEFAULT_CAP) -> int:
        value = 0
        for c in symbols[: max(0, int(max_len))]:
            if self.is_terminator(c):
                break
            idx = self._index.get(c)
            if idx is None:
                if self.strict:
                    raise SymbolError(f"undecodable symbol: {c!r}")
                continue
            value = value * self.base + idx
            if value >= cap:
                # Saturated; further digits can only grow it.
                return cap
        return value

    def decode_text(self, symbols: str, max_len: int) -> str:
        out = []
        for c in symbols[: max(0, int(max_len))]:
            if self.is_terminator(c):
                break
            if c not in self._index:
                if self.strict:
                    raise SymbolError(f"undecodable symbol: {c!r}")
                continue
            out.append(c)
        return "".join(out)

    # Client-side inverses; used by tests and tooling to build symbol streams.

    def encode_number(self, value: int, width: int | None = None) -> list[int]:
        if value < 0:
            raise ValueError("value must be non-negative")
        digits = []
        while value:
            value, rem = divmod(value, self.base)
            digits.append(rem)
        digits.reverse()
        if not digits:
            digits = [0]
        if width is not None and len(digits) < width:
            digits = [0] * (width - len(digits)) + digits
        return digits

    def encode_text(self, text: str) -> list[int]:
        out = []
        for c in text:
            idx = self._index.get(c)
            if idx is None:
                raise SymbolError(f"character not in alphabet: {c!r}")
            out.append(idx)
        return out

    def join(self, indices: Iterable[int]) -> str:
        return "".join(self.encode_symbol(i) for i in indices)
