import asyncio
import json
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Tuple

from rich import print
from rich.progress import Progress, SpinnerColumn, TimeElapsedColumn, TextColumn, BarColumn, TaskProgressColumn

from src.block import Block, BlockParseError
from src.config import FETCH_CONCURRENCY, GENESIS_HASHES, NETWORK
from src.filters import basic_builder, extended_builder
from src.gcs import EMPTY_FILTER_BYTES, GCSFilter
from src.headers import ChainState, header_to_hex, next_header

P_VALUES = range(1, 33)
DEFAULT_P = 19

COLUMNS_COMMENT = ("Block Height,Block Hash,Block,Previous Basic Header,Previous Ext Header,"
                   "Basic Filter,Ext Filter,Basic Header,Ext Header,Notes")


class TestBlockCase(NamedTuple):
    __test__ = False

    height: int
    comment: str


# Heights on testnet3 that exercise the interesting corners of extraction.
# New entries must keep the list sorted.
TEST_BLOCK_CASES = [
    TestBlockCase(0, "Genesis block"),
    TestBlockCase(1, "Extended filter is empty"),
    TestBlockCase(2, ""),
    TestBlockCase(3, ""),
    TestBlockCase(926485, "Duplicate pushdata 913bcc2be49cb534c20474c4dee1e9c4c317e7eb"),
    TestBlockCase(987876, "Coinbase tx has unparseable output script"),
    TestBlockCase(1263442, "Includes witness data"),
]


class VerificationError(RuntimeError):
    """Locally computed filter or header disagrees with the reference source."""


class FilterResult(NamedTuple):
    p: int
    basic_filter: bytes
    ext_filter: bytes
    prev_basic_header: bytes
    prev_ext_header: bytes
    basic_header: bytes
    ext_header: bytes


class VectorRow(NamedTuple):
    height: int
    block_hash: str
    block: bytes
    prev_basic_header: bytes
    prev_ext_header: bytes
    basic_filter: bytes
    ext_filter: bytes
    basic_header: bytes
    ext_header: bytes
    notes: str

    def to_json(self) -> list:
        return [
            self.height,
            self.block_hash,
            self.block.hex(),
            header_to_hex(self.prev_basic_header),
            header_to_hex(self.prev_ext_header),
            self.basic_filter.hex(),
            self.ext_filter.hex(),
            header_to_hex(self.basic_header),
            header_to_hex(self.ext_header),
            self.notes,
        ]


def compute_block_filters(block: Block, state: ChainState,
                          p_values: Iterable[int] = P_VALUES) -> Tuple[Dict[int, FilterResult], ChainState]:
    """Build both filters of `block` for every P and fold them into the chains.

    Returns the per-P results and the successor chain state.
    """
    # Elements and their SipHashes do not depend on P
    basic_hashes = basic_builder(block, DEFAULT_P).hashes()
    ext_hashes = extended_builder(block, DEFAULT_P).hashes()

    results = {}
    for p in p_values:
        basic = GCSFilter.from_hashes(basic_hashes, p).n_bytes()
        ext = GCSFilter.from_hashes(ext_hashes, p).n_bytes()

        prev_basic = state.basic(p)
        prev_ext = state.extended(p)
        basic_header = next_header(basic, prev_basic)
        ext_header = next_header(ext, prev_ext)

        results[p] = FilterResult(p, basic, ext, prev_basic, prev_ext, basic_header, ext_header)
        state = state.advance(p, basic_header, ext_header)
    return results, state


def filters_equal(a: bytes, b: bytes) -> bool:
    # A zero-length filter and an explicit zero count are the same empty set
    if a in (b"", EMPTY_FILTER_BYTES) and b in (b"", EMPTY_FILTER_BYTES):
        return True
    return a == b


class JSONTestWriter:
    """Writes rows as a JSON array of arrays, one row per line."""

    def __init__(self, writer):
        self.writer = writer
        self.first_row_written = False

    def write_comment(self, comment: str):
        self.write_test_case([comment])

    def write_test_case(self, row: list):
        if self.first_row_written:
            self.writer.write(",\n")
        else:
            self.writer.write("[\n")
            self.first_row_written = True
        self.writer.write(json.dumps(row, separators=(",", ":")))

    def close(self):
        if self.first_row_written:
            self.writer.write("\n]\n")


def vector_file_name(network: str, p: int) -> str:
    return f"{network}-{p:02d}.json"


def open_vector_files(output_dir: Path, network: str, stack: ExitStack,
                      p_values: Iterable[int] = P_VALUES) -> Dict[int, JSONTestWriter]:
    """One writer per P under a fresh `output_dir`; existing output is never overwritten."""
    output_dir.mkdir(parents=True, exist_ok=False)

    writers = {}
    for p in p_values:
        f = stack.enter_context(open(output_dir / vector_file_name(network, p), "w", encoding="utf-8"))
        writer = JSONTestWriter(f)
        # Registered after the file, so it closes the array before the file closes
        stack.callback(writer.close)
        writer.write_comment(COLUMNS_COMMENT)
        writers[p] = writer
    return writers


class VectorGenerator:
    def __init__(self, rpc, writers: Dict[int, JSONTestWriter],
                 cases: List[TestBlockCase] = TEST_BLOCK_CASES, reference=None,
                 network: str = NETWORK, fetch_concurrency: int = FETCH_CONCURRENCY,
                 p_values: Iterable[int] = P_VALUES, default_p: int = DEFAULT_P):
        self.rpc = rpc
        self.writers = writers
        self.cases = list(cases)
        self.reference = reference
        self.network = network
        self.fetch_concurrency = max(1, fetch_concurrency)
        self.p_values = list(p_values)
        self.default_p = default_p

        for prev, case in zip(self.cases, self.cases[1:]):
            if case.height <= prev.height:
                raise ValueError(f"Test heights must be strictly increasing: {prev.height} then {case.height}")

        missing = [p for p in self.p_values if p not in self.writers]
        if missing:
            raise ValueError(f"No output writer for P={missing}")

    async def check_network(self):
        """Verifies that the node serves the configured network."""
        genesis_hash = await self.rpc.get_block_hash(0)
        expected = GENESIS_HASHES.get(self.network)
        if expected and genesis_hash != expected:
            print(f"[bold red]CRITICAL NETWORK MISMATCH[/bold red]")
            print(f"Configured for: [yellow]{self.network}[/yellow] (Genesis: {expected})")
            print(f"Connected node: [red]{genesis_hash}[/red]")
            raise RuntimeError(f"Network mismatch: Configured {self.network} but node has genesis {genesis_hash}")
        elif not expected:
            print(f"[yellow]Warning: Unknown network '{self.network}', skipping genesis check.[/yellow]")

    async def _fetch_one(self, height: int):
        block_hash = await self.rpc.get_block_hash(height)
        raw_hex = await self.rpc.get_raw_block(block_hash)
        return block_hash, raw_hex

    async def _fetch_worker(self, queue: asyncio.Queue, start_height: int, end_height: int):
        """Fetches blocks ahead in batches and queues them in height order.

        The first failure is queued in place of a block and ends the worker.
        """
        current_height = start_height
        try:
            while current_height <= end_height:
                batch_end = min(end_height, current_height + self.fetch_concurrency - 1)
                heights = list(range(current_height, batch_end + 1))
                tasks = [asyncio.create_task(self._fetch_one(h)) for h in heights]
                try:
                    fetched = await asyncio.gather(*tasks)
                except Exception:
                    # Don't leave the rest of the batch running
                    for t in tasks:
                        t.cancel()
                    await asyncio.gather(*tasks, return_exceptions=True)
                    raise
                for h, (block_hash, raw_hex) in zip(heights, fetched):
                    await queue.put((h, block_hash, raw_hex))
                current_height = batch_end + 1
        except Exception as e:
            await queue.put(e)
            return

        await queue.put(None)

    @staticmethod
    def decode_block(height: int, block_hash: str, raw_hex: str) -> Tuple[Block, bytes]:
        try:
            raw = bytes.fromhex(raw_hex)
        except (TypeError, ValueError) as e:
            raise BlockParseError(f"Block {block_hash} at height {height} is not valid hex") from e
        block = Block.from_bytes(raw)
        if block.hash_hex != block_hash:
            raise BlockParseError(f"Block at height {height} hashes to {block.hash_hex}, node reported {block_hash}")
        return block, raw

    async def cross_check(self, height: int, block_hash: str, result: FilterResult):
        checks = [
            ("basic", result.basic_filter, result.basic_header),
            ("extended", result.ext_filter, result.ext_header),
        ]
        for variant, filter_bytes, header in checks:
            ref = await self.reference.get_block_filter(block_hash, variant)
            ref_filter = bytes.fromhex(ref["filter"])
            if not filters_equal(ref_filter, filter_bytes):
                raise VerificationError(
                    f"{variant} filter mismatch at height {height}, P={result.p}: "
                    f"reference {ref_filter.hex()} != local {filter_bytes.hex()}")
            if ref["header"] != header_to_hex(header):
                raise VerificationError(
                    f"{variant} header mismatch at height {height}, P={result.p}: "
                    f"reference {ref['header']} != local {header_to_hex(header)}")

    def emit(self, case: TestBlockCase, block_hash: str, raw: bytes, results: Dict[int, FilterResult]):
        for p in self.p_values:
            r = results[p]
            row = VectorRow(case.height, block_hash, raw, r.prev_basic_header, r.prev_ext_header,
                            r.basic_filter, r.ext_filter, r.basic_header, r.ext_header, case.comment)
            self.writers[p].write_test_case(row.to_json())

    async def run(self) -> ChainState:
        """Walks heights from genesis up to the last test case, writing rows as it goes."""
        state = ChainState.genesis(self.p_values)
        if not self.cases:
            return state

        await self.check_network()

        end_height = self.cases[-1].height
        queue = asyncio.Queue(maxsize=self.fetch_concurrency * 3)
        case_index = 0

        with Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[bold yellow]{task.fields[status]}"),
            TimeElapsedColumn(),
        ) as progress:
            task = progress.add_task("Generating...", total=end_height + 1, status="Starting")
            fetch_task = asyncio.create_task(self._fetch_worker(queue, 0, end_height))

            try:
                while case_index < len(self.cases):
                    item = await queue.get()
                    if item is None:
                        break
                    if isinstance(item, Exception):
                        raise item

                    height, block_hash, raw_hex = item
                    block, raw = self.decode_block(height, block_hash, raw_hex)

                    results, state = compute_block_filters(block, state, self.p_values)

                    if self.reference is not None and self.default_p in results:
                        await self.cross_check(height, block_hash, results[self.default_p])

                    case = self.cases[case_index]
                    if height == case.height:
                        self.emit(case, block_hash, raw, results)
                        progress.console.print(f"[green]Wrote height {height}[/green] {case.comment}")
                        case_index += 1

                    progress.update(task, completed=height + 1, status=f"Height {height}")
            finally:
                if not fetch_task.done():
                    fetch_task.cancel()
                    try:
                        await fetch_task
                    except asyncio.CancelledError:
                        pass

        if case_index < len(self.cases):
            raise RuntimeError(f"Block source ended before height {self.cases[case_index].height}")

        print(f"[bold green]Wrote {case_index} test blocks for {len(self.p_values)} values of P.[/bold green]")
        return state
