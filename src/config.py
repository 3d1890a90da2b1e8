import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Bitcoin Core RPC
RPC_URLS = [
    url.strip()
    for url in os.getenv("BITCOIN_RPC_URL", "http://127.0.0.1:18332").split(",")
    if url.strip()
]
RPC_TIMEOUT = float(os.getenv("RPC_TIMEOUT", "60"))

NETWORK = os.getenv("NETWORK", "testnet").lower()

GENESIS_HASHES = {
    "mainnet": "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f",
    "testnet": "000000000933ea01ad0ee984209779baaec3ced90fa3f408719526f8d77f4943",
    "regtest": "0f9188f13cb7b2c71f2a335e3a4fc328bf5beb436012afca590b1a11466e2206",
}

# Vector output (never overwritten)
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "./gcstestvectors"))

# Raw block cache
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
BLOCK_CACHE = os.getenv("BLOCK_CACHE", "1").lower() not in ("0", "false", "no")

# Cross-check filters and headers at the default P against a server that
# serves both filter types (btcd getcfilter / getcfilterheader)
REFERENCE_RPC_URL = os.getenv("REFERENCE_RPC_URL", "").strip()
VERIFY_FILTERS = os.getenv("VERIFY_FILTERS", "0").lower() in ("1", "true", "yes")

# Blocks fetched ahead of the filter computation
FETCH_CONCURRENCY = max(1, int(os.getenv("FETCH_CONCURRENCY", "8")))
