import hashlib

MASK64 = 0xffffffffffffffff


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """Double SHA-256, as used for txids, block hashes and filter headers."""
    return sha256(sha256(data))


def _rotl(x: int, b: int) -> int:
    return ((x << b) | (x >> (64 - b))) & MASK64


def _sipround(v0, v1, v2, v3):
    v0 = (v0 + v1) & MASK64
    v2 = (v2 + v3) & MASK64
    v1 = _rotl(v1, 13)
    v3 = _rotl(v3, 16)
    v1 ^= v0
    v3 ^= v2
    v0 = _rotl(v0, 32)
    v2 = (v2 + v1) & MASK64
    v0 = (v0 + v3) & MASK64
    v1 = _rotl(v1, 17)
    v3 = _rotl(v3, 21)
    v1 ^= v2
    v3 ^= v0
    v2 = _rotl(v2, 32)
    return v0, v1, v2, v3


def siphash(k: bytes, m: bytes) -> int:
    """SipHash-2-4 of `m` under the 128-bit key `k`."""
    if len(k) != 16:
        raise ValueError(f"SipHash key must be 16 bytes, got {len(k)}")

    k0 = int.from_bytes(k[0:8], 'little')
    k1 = int.from_bytes(k[8:16], 'little')

    v0 = k0 ^ 0x736f6d6570736575
    v1 = k1 ^ 0x646f72616e646f6d
    v2 = k0 ^ 0x6c7967656e657261
    v3 = k1 ^ 0x7465646279746573

    for i in range(0, len(m) // 8):
        mi = int.from_bytes(m[i*8:(i+1)*8], 'little')
        v3 ^= mi
        for _ in range(2):
            v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)
        v0 ^= mi

    last = m[len(m)//8*8:]
    last_block = (len(m) & 0xff) << 56
    for i, b in enumerate(last):
        last_block |= b << (8 * i)

    v3 ^= last_block
    for _ in range(2):
        v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)
    v0 ^= last_block

    v2 ^= 0xff
    for _ in range(4):
        v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)

    return v0 ^ v1 ^ v2 ^ v3


def hash_to_range(k: bytes, item: bytes, f: int) -> int:
    """Map `item` uniformly into [0, f) with a multiply-and-shift reduction."""
    return (siphash(k, item) * f) >> 64
