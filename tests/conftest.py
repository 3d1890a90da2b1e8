import pytest

from src.block import Block, OutPoint, Transaction, TxIn, TxOut

GENESIS_HEX = (
    "01000000"
    "0000000000000000000000000000000000000000000000000000000000000000"
    "3ba3edfd7a7b12b27ac72c3e67768f617fc81bc3888a51323a9fb8aa4b1e5e4a"
    "29ab5f49ffff001d1dac2b7c"
    "01"
    "01000000"
    "01"
    "0000000000000000000000000000000000000000000000000000000000000000ffffffff"
    "4d04ffff001d0104455468652054696d65732030332f4a616e2f32303039204368616e63656c6c6f72"
    "206f6e206272696e6b206f66207365636f6e64206261696c6f757420666f722062616e6b73"
    "ffffffff"
    "01"
    "00f2052a01000000"
    "434104678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f61deb649f6bc3f4cef38c4f3"
    "5504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5fac"
    "00000000"
)
GENESIS_HASH = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"
GENESIS_PUBKEY = bytes.fromhex(
    "04678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f61deb649f6bc3f4cef38c4f3"
    "5504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5f"
)

P2PKH = bytes.fromhex("76a914") + b"\x11" * 20 + bytes.fromhex("88ac")
P2WPKH = b"\x00\x14" + b"\x22" * 20


def coinbase_tx(tag: bytes = b"\x01", script_pubkey: bytes = P2PKH) -> Transaction:
    return Transaction(
        vin=[TxIn(OutPoint(), script_sig=b"\x03" + tag.ljust(3, b"\x00"))],
        vout=[TxOut(50 * 100_000_000, script_pubkey)],
    )


def spend_tx(prev_txid: bytes, index: int = 0, script_sig: bytes = b"",
             witness=None, script_pubkey: bytes = P2WPKH) -> Transaction:
    return Transaction(
        version=2,
        vin=[TxIn(OutPoint(prev_txid, index), script_sig=script_sig, witness=witness)],
        vout=[TxOut(10_000, script_pubkey)],
    )


def make_block(txs, prev_block: bytes = b"\x00" * 32, nonce: int = 0) -> Block:
    return Block(version=1, prev_block=prev_block, merkle_root=txs[0].txid,
                 time=1_500_000_000, bits=0x207fffff, nonce=nonce, txs=txs)


@pytest.fixture
def genesis_block() -> Block:
    return Block.from_hex(GENESIS_HEX)


@pytest.fixture
def spending_block() -> Block:
    """Coinbase plus one legacy spend and one segwit spend."""
    cb = coinbase_tx(b"\x02")
    legacy = spend_tx(b"\xaa" * 32, 1,
                      script_sig=b"\x47" + b"\x30" * 71 + b"\x21" + b"\x02" * 33,
                      script_pubkey=P2PKH)
    segwit = spend_tx(b"\xbb" * 32, 0, witness=[b"\x30" * 72, b"\x03" * 33])
    return make_block([cb, legacy, segwit], nonce=7)


@pytest.fixture
def chain_blocks():
    """Three linked blocks: height 0 (coinbase only), 1 and 2 spending earlier coinbases."""
    b0 = make_block([coinbase_tx(b"\x10")])
    cb1 = coinbase_tx(b"\x11")
    b1 = make_block([cb1, spend_tx(b0.txs[0].txid, 0, witness=[b"\x44" * 64])], prev_block=b0.hash)
    cb2 = coinbase_tx(b"\x12")
    b2 = make_block([cb2, spend_tx(cb1.txid, 0, script_sig=b"\x02\xab\xcd")], prev_block=b1.hash)
    return [b0, b1, b2]
