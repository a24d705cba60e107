#!/usr/bin/env python3
"""
rootex — Extract the raw rootfs from an LZFSE-compressed image.

Usage:
    python main.py rootfs.dmg rootfs.bin             # Scan from offset 0
    python main.py -o 0x1000 rootfs.dmg rootfs.bin   # Start at a hex offset
    python main.py --rescan rootfs.dmg rootfs.bin    # Legacy one-byte advance
"""

APP_VERSION = "1.1.0"

import sys
import logging
import argparse

from rootex.errors import RootexError
from rootex.scanner import BlockScanner, BlockReport, ScanOptions
from rootex.sniffer import SuperblockMatch


def _hex_offset(value: str) -> int:
    try:
        offset = int(value, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid hex offset: {value!r}")
    if offset < 0:
        raise argparse.ArgumentTypeError("offset must be positive")
    return offset


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rootex",
        description="Find LZFSE blocks in an image and write the decoded stream.")
    parser.add_argument("input", nargs="?", help="/path/to/bvxn_rootfs.dmg")
    parser.add_argument("output", nargs="?", help="/path/to/raw_output_rootfs.bin")
    parser.add_argument("-o", "--offset", type=_hex_offset, default=0,
                        help="Hex offset to start scanning at")
    parser.add_argument("--rescan", action="store_true",
                        help="Advance one byte after each block (legacy behaviour)")
    parser.add_argument("--legacy-marker-scan", action="store_true",
                        help="Use the legacy end-of-stream comparison")
    parser.add_argument("--no-sniff", action="store_true",
                        help="Don't look for APFS superblocks in the output")
    parser.add_argument("--ratio", type=int, default=BlockScanner.DEFAULT_CAPACITY_RATIO,
                        help="Output capacity as a multiple of the input size")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {APP_VERSION}")
    return parser


def cli_mode(args) -> int:
    options = ScanOptions(
        start_offset=args.offset,
        rescan_overlaps=args.rescan,
        legacy_marker_scan=args.legacy_marker_scan,
        sniff=not args.no_sniff,
        capacity_ratio=args.ratio,
    )
    scanner = BlockScanner(options=options)

    def on_block(report: BlockReport):
        print(f"OFF: {report.offset:#x}  [{report.variant.label}]")
        if report.ok:
            print(f"bytes decoded: {report.size}")
        else:
            print(f"  skipped: {report.error}: {report.message}")

    def on_superblock(match: SuperblockMatch):
        name = f"  name: {match.name}" if match.name else ""
        print(f"  {match.description} at output {match.offset:#x}{name}")

    scanner.set_block_callback(on_block)
    scanner.set_superblock_callback(on_superblock)

    try:
        result = scanner.scan_file(args.input, args.output)
    except RootexError as e:
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code

    print("─" * 60)
    print(f"  Blocks decoded: {result.fragment_count}"
          f"  Failed: {len(result.failures)}"
          f"  Superblocks: {len(result.superblocks)}")
    print(f"  Output: {result.output_path} ({result.bytes_written_human})"
          f"  in {result.elapsed_time:.1f}s")
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.input or not args.output:
        parser.print_usage()
        return 0
    if args.ratio < 1:
        parser.error("--ratio must be at least 1")

    return cli_mode(args)


if __name__ == "__main__":
    sys.exit(main())
