import pytest

from src.block import OutPoint, TxOut
from src.filters import basic_elements, extended_elements, build_basic_filter, build_extended_filter
from src.gcs import GCSBuilder, GCSFilter

from conftest import GENESIS_PUBKEY, P2PKH, coinbase_tx, make_block, spend_tx


def test_genesis_elements(genesis_block):
    coinbase = genesis_block.txs[0]
    assert basic_elements(genesis_block) == {coinbase.txid, GENESIS_PUBKEY}
    assert extended_elements(genesis_block) == set()


def test_genesis_filters_default_p(genesis_block):
    basic = build_basic_filter(genesis_block, 19)
    ext = build_extended_filter(genesis_block, 19)

    assert basic.n == 2
    assert basic.match(genesis_block.hash[:16], genesis_block.txs[0].txid)
    assert basic.match(genesis_block.hash[:16], GENESIS_PUBKEY)
    assert ext.n == 0
    assert ext.n_bytes() == b"\x00"


def test_spending_block_elements(spending_block):
    cb, legacy, segwit = spending_block.txs
    basic = basic_elements(spending_block)

    assert {cb.txid, legacy.txid, segwit.txid} <= basic
    assert OutPoint(b"\xaa" * 32, 1).serialize() in basic
    assert OutPoint(b"\xbb" * 32, 0).serialize() in basic
    # The coinbase's null outpoint is never added
    assert OutPoint().serialize() not in basic
    # Output pushes, not whole scripts
    assert b"\x11" * 20 in basic
    assert b"\x22" * 20 in basic
    assert P2PKH not in basic

    ext = extended_elements(spending_block)
    assert ext == {b"\x30" * 71, b"\x02" * 33, b"\x30" * 72, b"\x03" * 33}


def test_coinbase_inputs_ignored():
    cb = coinbase_tx(b"\x05")
    cb.vin[0].witness = [b"\x00" * 32]
    cb.vin[0].script_sig = b"\x04" + b"\x99" * 4
    block = make_block([cb])

    assert extended_elements(block) == set()
    assert basic_elements(block) == {cb.txid, b"\x11" * 20}


def test_unparseable_output_script_contributes_nothing():
    cb = coinbase_tx(b"\x06", script_pubkey=b"\x14\x01\x02")  # push of 20, only 2 bytes
    cb.vout.append(TxOut(0, b"\x6a\x04test"))
    block = make_block([cb])

    assert basic_elements(block) == {cb.txid, b"test"}
    assert build_basic_filter(block, 19).n == 2


def test_unparseable_script_sig_contributes_nothing():
    cb = coinbase_tx(b"\x07")
    tx = spend_tx(b"\xcc" * 32, script_sig=b"\x4c", witness=[b"\x01\x02"])
    block = make_block([cb, tx])
    assert extended_elements(block) == {b"\x01\x02"}


def test_duplicate_pushes_collapse():
    cb = coinbase_tx(b"\x08")
    push = b"\x14" + b"\x91" * 20
    cb.vout = [TxOut(1, push + b"\x87"), TxOut(2, push + push)]
    block = make_block([cb])

    assert basic_elements(block) == {cb.txid, b"\x91" * 20}
    assert build_basic_filter(block, 19).n == 2


def test_filter_matches_builder(spending_block):
    for p in (1, 19, 32):
        expected = GCSBuilder.with_key_hash_p(spending_block.hash, p).add_entries(
            sorted(basic_elements(spending_block))).n_bytes()
        assert build_basic_filter(spending_block, p).n_bytes() == expected


def test_empty_extended_filter_decodes_empty(chain_blocks):
    f = build_extended_filter(chain_blocks[0], 19)
    assert GCSFilter.from_n_bytes(f.n_bytes(), 19).hashed_values() == []


@pytest.mark.parametrize("p", [1, 19, 32])
def test_filters_deterministic(spending_block, p):
    assert build_basic_filter(spending_block, p).n_bytes() == build_basic_filter(spending_block, p).n_bytes()
    assert build_extended_filter(spending_block, p).n_bytes() == build_extended_filter(spending_block, p).n_bytes()
