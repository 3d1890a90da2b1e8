from io import BytesIO
from typing import Iterable, List, Optional, Set

from bitarray import bitarray
from bitarray.util import ba2int, int2ba

from src.block import (BlockParseError, OutPoint, ScriptParseError, deser_compact_size,
                       pushed_data, ser_compact_size)
from src.crypto import hash_to_range, siphash

KEY_SIZE = 16
MIN_P = 1
MAX_P = 32
MAX_N = 0xffffffff

EMPTY_FILTER_BYTES = ser_compact_size(0)


class GCSError(Exception):
    pass


class FilterKeyError(GCSError):
    """The filter key could not be derived from the supplied seed."""


def derive_key(key_seed: bytes) -> bytes:
    """Filter key: the first 16 bytes of the block hash (internal byte order)."""
    if key_seed is None or len(key_seed) < KEY_SIZE:
        size = 0 if key_seed is None else len(key_seed)
        raise FilterKeyError(f"Key seed must be at least {KEY_SIZE} bytes, got {size}")
    return bytes(key_seed[:KEY_SIZE])


def _check_p(p: int):
    if not MIN_P <= p <= MAX_P:
        raise ValueError(f"P must be between {MIN_P} and {MAX_P}, got {p}")


def golomb_rice_encode(values: List[int], p: int) -> bytes:
    """Golomb-Rice code the deltas of sorted `values` with parameter `p`."""
    ba = bitarray(endian='big')
    last = 0
    for v in values:
        delta = v - last
        last = v

        quotient = delta >> p
        remainder = delta & ((1 << p) - 1)

        ba.extend([1] * quotient)
        ba.append(0)
        ba.extend(int2ba(remainder, length=p, endian='big'))

    # tobytes() pads the final byte with zero bits
    return ba.tobytes()


def golomb_rice_decode(data: bytes, n: int, p: int) -> List[int]:
    ba = bitarray(endian='big')
    ba.frombytes(data)

    values = []
    last = 0
    pos = 0
    for _ in range(n):
        try:
            zero = ba.index(0, pos)
        except ValueError as e:
            raise GCSError("Truncated Golomb-Rice quotient") from e
        quotient = zero - pos
        pos = zero + 1
        if pos + p > len(ba):
            raise GCSError("Truncated Golomb-Rice remainder")
        remainder = ba2int(ba[pos:pos + p], signed=False)
        pos += p

        last += (quotient << p) | remainder
        values.append(last)
    return values


class GCSFilter:
    """An encoded Golomb-coded set of N elements under collision parameter P."""

    def __init__(self, n: int, p: int, data: bytes):
        _check_p(p)
        self.n = n
        self.p = p
        self.data = data

    @property
    def modulus(self) -> int:
        return self.n << self.p

    @classmethod
    def from_values(cls, values: Iterable[int], p: int) -> "GCSFilter":
        values = sorted(values)
        return cls(len(values), p, golomb_rice_encode(values, p))

    @classmethod
    def from_hashes(cls, hashes: List[int], p: int) -> "GCSFilter":
        """Encode 64-bit element hashes, reducing them into [0, N << p)."""
        if len(hashes) > MAX_N:
            raise GCSError(f"Too many filter elements: {len(hashes)}")
        f = len(hashes) << p
        return cls.from_values(((h * f) >> 64 for h in hashes), p)

    @classmethod
    def from_n_bytes(cls, n_bytes: bytes, p: int) -> "GCSFilter":
        """Decode the serialized form. Both b"" and b"\\x00" are the empty filter."""
        if not n_bytes:
            return cls(0, p, b"")
        f = BytesIO(n_bytes)
        try:
            n = deser_compact_size(f)
        except BlockParseError as e:
            raise GCSError(f"Malformed filter length prefix: {e}") from e
        return cls(n, p, f.read())

    def n_bytes(self) -> bytes:
        if self.n == 0:
            return EMPTY_FILTER_BYTES
        return ser_compact_size(self.n) + self.data

    def hashed_values(self) -> List[int]:
        """Sorted element values in [0, modulus), decoded from the bitstream."""
        return golomb_rice_decode(self.data, self.n, self.p)

    def match(self, key: bytes, data: bytes) -> bool:
        if self.n == 0:
            return False
        target = hash_to_range(key, data, self.modulus)
        for v in self.hashed_values():
            if v == target:
                return True
            if v > target:
                break
        return False

    def match_any(self, key: bytes, items: Iterable[bytes]) -> bool:
        if self.n == 0:
            return False
        targets = sorted({hash_to_range(key, item, self.modulus) for item in items})
        if not targets:
            return False

        values = self.hashed_values()
        i = j = 0
        while i < len(values) and j < len(targets):
            if values[i] == targets[j]:
                return True
            if values[i] < targets[j]:
                i += 1
            else:
                j += 1
        return False

    def __eq__(self, other):
        if not isinstance(other, GCSFilter):
            return NotImplemented
        return self.p == other.p and self.n_bytes() == other.n_bytes()

    def __repr__(self):
        return f"GCSFilter(n={self.n}, p={self.p}, bytes={len(self.n_bytes())})"


class GCSBuilder:
    """Collects filter elements for one block and encodes them into a GCSFilter.

    Key errors are recorded on the builder and surface from key(), n_bytes()
    and build(), so a caller can add entries unconditionally.
    """

    def __init__(self, key: Optional[bytes] = None, p: int = 19):
        _check_p(p)
        self.p = p
        self._key = key
        self._err = None
        self._entries = set()

    @classmethod
    def with_key_hash_p(cls, block_hash: bytes, p: int) -> "GCSBuilder":
        b = cls(p=p)
        try:
            b._key = derive_key(block_hash)
        except FilterKeyError as e:
            b._err = e
        return b

    def key(self) -> bytes:
        if self._err is not None:
            raise self._err
        if self._key is None or len(self._key) != KEY_SIZE:
            raise FilterKeyError("Builder has no valid key")
        return self._key

    def add_entry(self, data: bytes) -> "GCSBuilder":
        if data:
            self._entries.add(bytes(data))
        return self

    def add_entries(self, entries: Iterable[bytes]) -> "GCSBuilder":
        for data in entries:
            self.add_entry(data)
        return self

    def add_hash(self, h: bytes) -> "GCSBuilder":
        return self.add_entry(h)

    def add_outpoint(self, outpoint: OutPoint) -> "GCSBuilder":
        return self.add_entry(outpoint.serialize())

    def add_script(self, script: bytes) -> "GCSBuilder":
        """Adds each data push of `script`; an unparseable script adds nothing."""
        try:
            pushes = pushed_data(script)
        except ScriptParseError:
            return self
        return self.add_entries(pushes)

    def add_witness(self, witness: List[bytes]) -> "GCSBuilder":
        return self.add_entries(witness)

    @property
    def entries(self) -> Set[bytes]:
        return set(self._entries)

    def __len__(self):
        return len(self._entries)

    def hashes(self) -> List[int]:
        """SipHash of every entry under the builder's key; independent of P."""
        key = self.key()
        return [siphash(key, e) for e in self._entries]

    def build(self) -> GCSFilter:
        return GCSFilter.from_hashes(self.hashes(), self.p)

    def n_bytes(self) -> bytes:
        return self.build().n_bytes()
