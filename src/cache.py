import gzip
import asyncio
from pathlib import Path
from typing import Optional

from rich import print

from src.crypto import hash256

HEADER_SIZE = 80


class BlockCache:
    """On-disk store of raw blocks, one gzip'd file per block hash.

    Blocks never change once their hash is known, so entries have no expiry.
    Every read re-hashes the stored header: a truncated, corrupt or misfiled
    entry is a miss and the next put() replaces it.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        # Limit concurrent file operations to avoid "Too many open files"
        self.semaphore = asyncio.Semaphore(50)

    def _get_path(self, block_hash: str) -> Path:
        block_hash = block_hash.lower()
        # Leading hex digits of mined blocks are zeros, shard on the tail
        subdir = self.cache_dir / block_hash[-2:]
        subdir.mkdir(exist_ok=True)
        return subdir / f"{block_hash}.blk.gz"

    async def get(self, block_hash: str) -> Optional[str]:
        async with self.semaphore:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._get_sync, block_hash)

    def _get_sync(self, block_hash: str) -> Optional[str]:
        path = self._get_path(block_hash)
        if not path.exists():
            return None

        try:
            with gzip.open(path, "rb") as f:
                raw = f.read()
        except (OSError, EOFError) as e:
            print(f"[yellow]Ignoring unreadable cached block {path.name}: {e}[/yellow]")
            return None

        if len(raw) < HEADER_SIZE or hash256(raw[:HEADER_SIZE])[::-1].hex() != block_hash.lower():
            print(f"[yellow]Cached block {path.name} does not match its hash, refetching[/yellow]")
            return None

        return raw.hex()

    async def put(self, block_hash: str, raw_hex: str):
        async with self.semaphore:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._put_sync, block_hash, raw_hex)

    def _put_sync(self, block_hash: str, raw_hex: str):
        path = self._get_path(block_hash)
        # Atomic write: temp file then rename
        temp_path = path.with_suffix(".tmp")
        try:
            with gzip.open(temp_path, "wb") as f:
                f.write(bytes.fromhex(raw_hex))
            temp_path.replace(path)
        except OSError as e:
            print(f"[yellow]Cache write error: {e}[/yellow]")
