from typing import Set

from src.block import Block
from src.gcs import GCSBuilder, GCSFilter


def add_basic_entries(b: GCSBuilder, block: Block) -> GCSBuilder:
    """Txids, spent outpoints (coinbase excluded) and output script pushes."""
    for i, tx in enumerate(block.txs):
        b.add_hash(tx.txid)

        # Skip the inputs of the coinbase
        if i != 0:
            for txin in tx.vin:
                b.add_outpoint(txin.prevout)

        for txout in tx.vout:
            b.add_script(txout.script_pubkey)
    return b


def add_extended_entries(b: GCSBuilder, block: Block) -> GCSBuilder:
    """Pushes of every non-coinbase input's script_sig plus its witness stack items."""
    for tx in block.txs[1:]:
        for txin in tx.vin:
            if txin.script_sig:
                b.add_script(txin.script_sig)
            if txin.witness:
                b.add_witness(txin.witness)
    return b


def basic_elements(block: Block) -> Set[bytes]:
    return add_basic_entries(GCSBuilder(), block).entries


def extended_elements(block: Block) -> Set[bytes]:
    return add_extended_entries(GCSBuilder(), block).entries


def basic_builder(block: Block, p: int) -> GCSBuilder:
    b = GCSBuilder.with_key_hash_p(block.hash, p)
    # Surface key errors before walking the block
    b.key()
    return add_basic_entries(b, block)


def extended_builder(block: Block, p: int) -> GCSBuilder:
    b = GCSBuilder.with_key_hash_p(block.hash, p)
    b.key()
    return add_extended_entries(b, block)


def build_basic_filter(block: Block, p: int) -> GCSFilter:
    return basic_builder(block, p).build()


def build_extended_filter(block: Block, p: int) -> GCSFilter:
    return extended_builder(block, p).build()
