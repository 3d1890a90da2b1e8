import asyncio
import sys
import argparse
import signal
from contextlib import ExitStack
from pathlib import Path

from rich.console import Console
from rich.traceback import install

from src.config import NETWORK, OUTPUT_DIR, RPC_URLS, VERIFY_FILTERS, BLOCK_CACHE, REFERENCE_RPC_URL
from src.rpc import BitcoinRPC, CFilterRPC
from src.vectors import TEST_BLOCK_CASES, VectorGenerator, open_vector_files

install()
console = Console()


def handle_signal(signum, frame):
    console.print(f"\n[bold red]Received signal {signum}, shutting down...[/bold red]")
    raise KeyboardInterrupt


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Generate BIP-158 GCS filter test vectors for P=1..32")
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR,
                        help="Directory for the vector files (must not exist)")
    parser.add_argument("--network", default=NETWORK, help="Network name, used for the genesis check and file names")
    parser.add_argument("--verify", dest="verify", action="store_true", default=VERIFY_FILTERS,
                        help="Cross-check filters and headers at the default P against the reference server")
    parser.add_argument("--no-verify", dest="verify", action="store_false")
    parser.add_argument("--reference-url", default=REFERENCE_RPC_URL,
                        help="JSON-RPC URL of a server with getcfilter/getcfilterheader (e.g. btcd)")
    parser.add_argument("--no-cache", action="store_true", help="Do not cache raw blocks on disk")
    return parser.parse_args(argv)


async def generate(args) -> int:
    if args.verify and not args.reference_url:
        console.print("[bold red]--verify needs a reference server (--reference-url or REFERENCE_RPC_URL).[/bold red]")
        return 1

    console.print("[bold green]Starting filter vector generation...[/bold green]")
    console.print(f"Connecting to {len(RPC_URLS)} Bitcoin Core nodes: [cyan]{', '.join(RPC_URLS)}[/cyan]")

    rpc = BitcoinRPC(use_cache=BLOCK_CACHE and not args.no_cache)
    reference = None
    if args.verify:
        console.print(f"Cross-checking against [cyan]{args.reference_url}[/cyan]")
        reference = CFilterRPC(args.reference_url)
    try:
        with ExitStack() as stack:
            try:
                writers = open_vector_files(args.output_dir, args.network, stack)
            except FileExistsError:
                console.print(f"[bold red]Output directory {args.output_dir} already exists, refusing to overwrite.[/bold red]")
                return 1

            generator = VectorGenerator(rpc, writers, TEST_BLOCK_CASES,
                                        reference=reference,
                                        network=args.network)
            await generator.run()
    finally:
        await rpc.close()
        if reference is not None:
            await reference.close()

    console.print(f"[bold green]Done.[/bold green] Vectors in [cyan]{args.output_dir}[/cyan]")
    return 0


async def main(argv=None) -> int:
    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    args = parse_args(argv)
    try:
        return await generate(args)
    except KeyboardInterrupt:
        console.print("[bold red]Interrupted.[/bold red]")
        return 130
    except Exception as e:
        console.print(f"[bold red]Fatal error:[/bold red] {e}")
        console.print_exception()
        return 1


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
