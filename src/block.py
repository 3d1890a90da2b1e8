import struct
from io import BytesIO
from typing import List, Optional

from src.crypto import hash256

OP_PUSHDATA1 = 0x4c
OP_PUSHDATA2 = 0x4d
OP_PUSHDATA4 = 0x4e

BLOCK_HEADER_SIZE = 80


class BlockParseError(ValueError):
    """Raised when raw block bytes cannot be decoded."""


class ScriptParseError(ValueError):
    """Raised when a script contains a truncated push."""


def _read(f: BytesIO, n: int) -> bytes:
    data = f.read(n)
    if len(data) != n:
        raise BlockParseError(f"Unexpected end of data: wanted {n} bytes, got {len(data)}")
    return data


def ser_compact_size(n: int) -> bytes:
    if n < 253:
        return struct.pack("B", n)
    elif n < 0x10000:
        return struct.pack("<BH", 253, n)
    elif n < 0x100000000:
        return struct.pack("<BI", 254, n)
    return struct.pack("<BQ", 255, n)


def deser_compact_size(f: BytesIO) -> int:
    n = _read(f, 1)[0]
    if n == 253:
        n = struct.unpack("<H", _read(f, 2))[0]
    elif n == 254:
        n = struct.unpack("<I", _read(f, 4))[0]
    elif n == 255:
        n = struct.unpack("<Q", _read(f, 8))[0]
    return n


def ser_string(s: bytes) -> bytes:
    return ser_compact_size(len(s)) + s


def deser_string(f: BytesIO) -> bytes:
    return _read(f, deser_compact_size(f))


def pushed_data(script: bytes) -> List[bytes]:
    """Return every non-empty data push of `script`, in script order.

    Non-push opcodes are skipped. A push that runs past the end of the
    script raises ScriptParseError.
    """
    pushes = []
    i = 0
    while i < len(script):
        op = script[i]
        i += 1
        if 0 < op < OP_PUSHDATA1:
            size = op
        elif op == OP_PUSHDATA1:
            if i + 1 > len(script):
                raise ScriptParseError("OP_PUSHDATA1 missing length")
            size = script[i]
            i += 1
        elif op == OP_PUSHDATA2:
            if i + 2 > len(script):
                raise ScriptParseError("OP_PUSHDATA2 missing length")
            size = int.from_bytes(script[i:i+2], 'little')
            i += 2
        elif op == OP_PUSHDATA4:
            if i + 4 > len(script):
                raise ScriptParseError("OP_PUSHDATA4 missing length")
            size = int.from_bytes(script[i:i+4], 'little')
            i += 4
        else:
            continue

        if i + size > len(script):
            raise ScriptParseError(f"Push of {size} bytes at offset {i} exceeds script length {len(script)}")
        if size:
            pushes.append(script[i:i+size])
        i += size
    return pushes


class OutPoint:
    __slots__ = ("txid", "index")

    def __init__(self, txid: bytes = b"\x00" * 32, index: int = 0xffffffff):
        self.txid = txid
        self.index = index

    @classmethod
    def deserialize(cls, f: BytesIO) -> "OutPoint":
        txid = _read(f, 32)
        index = struct.unpack("<I", _read(f, 4))[0]
        return cls(txid, index)

    def serialize(self) -> bytes:
        return self.txid + struct.pack("<I", self.index)

    def __repr__(self):
        return f"OutPoint({self.txid[::-1].hex()}:{self.index})"


class TxIn:
    __slots__ = ("prevout", "script_sig", "sequence", "witness")

    def __init__(self, prevout: Optional[OutPoint] = None, script_sig: bytes = b"",
                 sequence: int = 0xffffffff, witness: Optional[List[bytes]] = None):
        self.prevout = prevout if prevout is not None else OutPoint()
        self.script_sig = script_sig
        self.sequence = sequence
        self.witness = witness if witness is not None else []

    @classmethod
    def deserialize(cls, f: BytesIO) -> "TxIn":
        prevout = OutPoint.deserialize(f)
        script_sig = deser_string(f)
        sequence = struct.unpack("<I", _read(f, 4))[0]
        return cls(prevout, script_sig, sequence)

    def serialize(self) -> bytes:
        return self.prevout.serialize() + ser_string(self.script_sig) + struct.pack("<I", self.sequence)


class TxOut:
    __slots__ = ("value", "script_pubkey")

    def __init__(self, value: int = 0, script_pubkey: bytes = b""):
        self.value = value
        self.script_pubkey = script_pubkey

    @classmethod
    def deserialize(cls, f: BytesIO) -> "TxOut":
        value = struct.unpack("<q", _read(f, 8))[0]
        return cls(value, deser_string(f))

    def serialize(self) -> bytes:
        return struct.pack("<q", self.value) + ser_string(self.script_pubkey)


class Transaction:
    __slots__ = ("version", "vin", "vout", "locktime", "_txid")

    def __init__(self, version: int = 1, vin: Optional[List[TxIn]] = None,
                 vout: Optional[List[TxOut]] = None, locktime: int = 0):
        self.version = version
        self.vin = vin if vin is not None else []
        self.vout = vout if vout is not None else []
        self.locktime = locktime
        self._txid = None

    @classmethod
    def deserialize(cls, f: BytesIO) -> "Transaction":
        version = struct.unpack("<i", _read(f, 4))[0]
        n_in = deser_compact_size(f)
        flags = 0
        if n_in == 0:
            # Segwit marker, followed by the flag byte and the real input count
            flags = _read(f, 1)[0]
            if flags == 0:
                raise BlockParseError("Segwit marker with zero flag")
            n_in = deser_compact_size(f)
        vin = [TxIn.deserialize(f) for _ in range(n_in)]
        vout = [TxOut.deserialize(f) for _ in range(deser_compact_size(f))]
        if flags & 1:
            for txin in vin:
                txin.witness = [deser_string(f) for _ in range(deser_compact_size(f))]
        locktime = struct.unpack("<I", _read(f, 4))[0]
        return cls(version, vin, vout, locktime)

    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.vin)

    def serialize_without_witness(self) -> bytes:
        r = struct.pack("<i", self.version)
        r += ser_compact_size(len(self.vin))
        r += b"".join(txin.serialize() for txin in self.vin)
        r += ser_compact_size(len(self.vout))
        r += b"".join(txout.serialize() for txout in self.vout)
        r += struct.pack("<I", self.locktime)
        return r

    def serialize(self) -> bytes:
        if not self.has_witness():
            return self.serialize_without_witness()
        r = struct.pack("<i", self.version)
        r += b"\x00\x01"
        r += ser_compact_size(len(self.vin))
        r += b"".join(txin.serialize() for txin in self.vin)
        r += ser_compact_size(len(self.vout))
        r += b"".join(txout.serialize() for txout in self.vout)
        for txin in self.vin:
            r += ser_compact_size(len(txin.witness))
            r += b"".join(ser_string(item) for item in txin.witness)
        r += struct.pack("<I", self.locktime)
        return r

    @property
    def txid(self) -> bytes:
        """Transaction hash in internal byte order (witness data excluded)."""
        if self._txid is None:
            self._txid = hash256(self.serialize_without_witness())
        return self._txid

    @property
    def txid_hex(self) -> str:
        return self.txid[::-1].hex()


class Block:
    __slots__ = ("version", "prev_block", "merkle_root", "time", "bits", "nonce", "txs")

    def __init__(self, version: int = 1, prev_block: bytes = b"\x00" * 32,
                 merkle_root: bytes = b"\x00" * 32, time: int = 0, bits: int = 0,
                 nonce: int = 0, txs: Optional[List[Transaction]] = None):
        self.version = version
        self.prev_block = prev_block
        self.merkle_root = merkle_root
        self.time = time
        self.bits = bits
        self.nonce = nonce
        self.txs = txs if txs is not None else []

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Block":
        f = BytesIO(raw)
        try:
            version = struct.unpack("<i", _read(f, 4))[0]
            prev_block = _read(f, 32)
            merkle_root = _read(f, 32)
            time, bits, nonce = struct.unpack("<III", _read(f, 12))
            txs = [Transaction.deserialize(f) for _ in range(deser_compact_size(f))]
        except struct.error as e:
            raise BlockParseError(f"Malformed block: {e}") from e

        trailing = len(raw) - f.tell()
        if trailing:
            raise BlockParseError(f"{trailing} trailing bytes after last transaction")
        return cls(version, prev_block, merkle_root, time, bits, nonce, txs)

    @classmethod
    def from_hex(cls, raw_hex: str) -> "Block":
        try:
            raw = bytes.fromhex(raw_hex)
        except ValueError as e:
            raise BlockParseError(f"Block is not valid hex: {e}") from e
        return cls.from_bytes(raw)

    def serialize_header(self) -> bytes:
        return (struct.pack("<i", self.version) + self.prev_block + self.merkle_root
                + struct.pack("<III", self.time, self.bits, self.nonce))

    def serialize(self) -> bytes:
        r = self.serialize_header()
        r += ser_compact_size(len(self.txs))
        r += b"".join(tx.serialize() for tx in self.txs)
        return r

    @property
    def hash(self) -> bytes:
        """Block hash in internal byte order."""
        return hash256(self.serialize_header())

    @property
    def hash_hex(self) -> str:
        return self.hash[::-1].hex()
