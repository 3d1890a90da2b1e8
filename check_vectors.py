import re
import sys
import json
import argparse
from pathlib import Path

from rich.console import Console
from rich.table import Table

from src.block import Block
from src.filters import build_basic_filter, build_extended_filter
from src.headers import header_from_hex, header_to_hex, next_header

console = Console()


def p_from_file_name(path: Path) -> int:
    m = re.search(r"-(\d{2})\.json$", path.name)
    if not m:
        raise ValueError(f"Cannot derive P from file name {path.name}, pass --p")
    return int(m.group(1))


def check_rows(rows: list, p: int) -> list:
    """Recompute every row and return a list of (height, column, expected, got) mismatches."""
    problems = []
    prev_height = None
    prev_basic_header = prev_ext_header = None

    for row in rows:
        if len(row) == 1:
            # Column comment
            continue

        (height, block_hash, block_hex, prev_basic, prev_ext,
         basic_filter, ext_filter, basic_header, ext_header, _notes) = row

        block = Block.from_hex(block_hex)
        if block.hash_hex != block_hash:
            problems.append((height, "Block Hash", block_hash, block.hash_hex))

        if prev_height is not None and height == prev_height + 1:
            if prev_basic != prev_basic_header:
                problems.append((height, "Previous Basic Header", prev_basic_header, prev_basic))
            if prev_ext != prev_ext_header:
                problems.append((height, "Previous Ext Header", prev_ext_header, prev_ext))

        got_basic = build_basic_filter(block, p).n_bytes()
        got_ext = build_extended_filter(block, p).n_bytes()
        if got_basic.hex() != basic_filter:
            problems.append((height, "Basic Filter", basic_filter, got_basic.hex()))
        if got_ext.hex() != ext_filter:
            problems.append((height, "Ext Filter", ext_filter, got_ext.hex()))

        got_basic_header = header_to_hex(next_header(got_basic, header_from_hex(prev_basic)))
        got_ext_header = header_to_hex(next_header(got_ext, header_from_hex(prev_ext)))
        if got_basic_header != basic_header:
            problems.append((height, "Basic Header", basic_header, got_basic_header))
        if got_ext_header != ext_header:
            problems.append((height, "Ext Header", ext_header, got_ext_header))

        prev_height = height
        prev_basic_header = basic_header
        prev_ext_header = ext_header

    return problems


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Re-verify a generated GCS test vector file offline")
    parser.add_argument("path", type=Path)
    parser.add_argument("--p", type=int, default=None, help="Collision parameter (default: from file name)")
    args = parser.parse_args(argv)

    p = args.p if args.p is not None else p_from_file_name(args.path)
    with open(args.path, encoding="utf-8") as f:
        rows = json.load(f)

    problems = check_rows(rows, p)
    n_rows = sum(1 for row in rows if len(row) > 1)
    if not problems:
        console.print(f"[bold green]OK[/bold green] {n_rows} rows in {args.path.name} (P={p})")
        return 0

    table = Table(title=f"Mismatches in {args.path.name} (P={p})")
    table.add_column("Height", style="cyan")
    table.add_column("Column", style="yellow")
    table.add_column("Expected")
    table.add_column("Computed", style="red")
    for height, column, expected, got in problems:
        table.add_row(str(height), column, expected, got)
    console.print(table)
    return 1


if __name__ == "__main__":
    sys.exit(main())
