from typing import Dict, Iterable

from src.crypto import hash256

HEADER_SIZE = 32
ZERO_HEADER = b"\x00" * HEADER_SIZE


def filter_hash(filter_bytes: bytes) -> bytes:
    return hash256(filter_bytes)


def next_header(filter_bytes: bytes, prev_header: bytes) -> bytes:
    """header[h] = hash256(hash256(filter[h]) || header[h-1])."""
    if len(prev_header) != HEADER_SIZE:
        raise ValueError(f"Previous header must be {HEADER_SIZE} bytes, got {len(prev_header)}")
    return hash256(filter_hash(filter_bytes) + prev_header)


def header_to_hex(header: bytes) -> str:
    """Display form (byte-reversed), matching block hash presentation."""
    return header[::-1].hex()


def header_from_hex(header_hex: str) -> bytes:
    return bytes.fromhex(header_hex)[::-1]


class ChainState:
    """Previous filter headers of the basic and extended chains, one slot per P.

    Instances are never mutated; advance() returns the successor state.
    """

    def __init__(self, basic: Dict[int, bytes], extended: Dict[int, bytes]):
        self._basic = dict(basic)
        self._extended = dict(extended)

    @classmethod
    def genesis(cls, p_values: Iterable[int]) -> "ChainState":
        p_values = list(p_values)
        return cls({p: ZERO_HEADER for p in p_values}, {p: ZERO_HEADER for p in p_values})

    def basic(self, p: int) -> bytes:
        return self._basic[p]

    def extended(self, p: int) -> bytes:
        return self._extended[p]

    def advance(self, p: int, basic_header: bytes, ext_header: bytes) -> "ChainState":
        if p not in self._basic:
            raise KeyError(f"No chain for P={p}")
        basic = dict(self._basic)
        extended = dict(self._extended)
        basic[p] = basic_header
        extended[p] = ext_header
        return ChainState(basic, extended)

    def __eq__(self, other):
        if not isinstance(other, ChainState):
            return NotImplemented
        return self._basic == other._basic and self._extended == other._extended
