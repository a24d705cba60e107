"""
Block Scanner Engine — find LZFSE blocks in a raw image and reassemble them.

HOW THE SCAN WORKS
──────────────────
1.  Map the input image read-only; pre-size the output (4× the input by
    default, since the decoded size is unknown until the end).
2.  Jump between "bvx" candidates with bytes.find(); a candidate is only
    classified when all 4 magic bytes are inside the blob.
3.  On a block magic: find the block extent, decode it with bounds suited to
    its variant, append the fragment through the bounded write cursor.
4.  Optionally sniff each fragment for APFS superblocks.
5.  Resume past the consumed input (or one byte further, in rescan mode,
    which revisits overlapping blocks like the original tool did).

Per-block failures (bad header, decoder error) are logged and skipped.
Running out of output capacity aborts the run.
"""

import enum
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .codec import LzfseCodec
from .dispatch import DecodedBlock, decode_block
from .errors import BlockError
from .framing import classify, find_extent
from .mmap_reader import BlobReader, MappedOutput, OutputBuffer
from .signatures import BLOCK_MAGIC_PREFIX, MAGIC_SIZE, BlockVariant
from .sniffer import SuperblockMatch, sniff_all

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
#  Data Classes
# ─────────────────────────────────────────────────────────────

class ScanState(enum.Enum):
    SCANNING = "scanning"
    BLOCK_FOUND = "block-found"
    DISPATCHING = "dispatching"
    APPENDING = "appending"
    DONE = "done"


@dataclass
class ScanOptions:
    start_offset: int = 0            # Where the scan cursor starts (-o)
    rescan_overlaps: bool = False    # Advance one byte after a block (legacy)
    legacy_marker_scan: bool = False # Old end-marker comparison (legacy)
    sniff: bool = True               # Look for superblocks in decoded output
    capacity_ratio: int = 4          # Output capacity = ratio × input size


@dataclass
class BlockReport:
    """One block the scanner tried to decode."""
    offset: int                      # Block start in the input
    variant: BlockVariant
    size: int = 0                    # Decoded bytes
    output_offset: int = -1          # Where the fragment landed in the output
    consumed_end: int = 0
    declared_raw: Optional[int] = None
    error: str = ""                  # Error kind, empty on success
    message: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass
class ScanProgress:
    total_bytes: int = 0
    scanned_bytes: int = 0
    blocks_found: int = 0
    blocks_failed: int = 0
    bytes_decoded: int = 0
    elapsed_time: float = 0.0
    state: ScanState = ScanState.SCANNING
    using_mmap: bool = False


@dataclass
class ScanResult:
    input_size: int = 0
    capacity: int = 0
    start_offset: int = 0
    blocks: list[BlockReport] = field(default_factory=list)
    failures: list[BlockReport] = field(default_factory=list)
    superblocks: list[SuperblockMatch] = field(default_factory=list)
    bytes_written: int = 0
    elapsed_time: float = 0.0
    output_path: str = ""

    @property
    def fragment_count(self) -> int:
        return len(self.blocks)

    @property
    def bytes_written_human(self) -> str:
        return _human_size(self.bytes_written)


# ─────────────────────────────────────────────────────────────
#  Scanner
# ─────────────────────────────────────────────────────────────

class BlockScanner:
    """
    Scan/reassembly driver.

    Walks an input blob, decodes every LZFSE-family block it finds and
    appends the decoded fragments to one output buffer.
    """

    DEFAULT_CAPACITY_RATIO = 4
    PROGRESS_INTERVAL = 0.3          # Seconds between progress callbacks

    def __init__(self, codec=None, options: Optional[ScanOptions] = None):
        self.options = options or ScanOptions()
        self.progress = ScanProgress()
        self._codec = codec if codec is not None else LzfseCodec()
        self._on_progress: Optional[Callable] = None
        self._on_block: Optional[Callable] = None
        self._on_superblock: Optional[Callable] = None

    def set_progress_callback(self, cb):
        self._on_progress = cb

    def set_block_callback(self, cb):
        """`cb(BlockReport)` for every block, decoded or failed."""
        self._on_block = cb

    def set_superblock_callback(self, cb):
        self._on_superblock = cb

    # ── Files ────────────────────────────────────────────────

    def scan_file(self, input_path: str, output_path: str,
                  use_mmap: bool = True) -> ScanResult:
        """Scan `input_path` and write the reassembled stream to `output_path`.

        The output file is truncated to the decoded length on every exit
        path, including a capacity abort.
        """
        ratio = self.options.capacity_ratio or self.DEFAULT_CAPACITY_RATIO
        with BlobReader(input_path, use_mmap=use_mmap) as reader:
            self.progress.using_mmap = reader.is_mmap
            with MappedOutput(output_path, reader.size * ratio) as output:
                result = self.scan(reader.data, output)
        result.output_path = output_path
        return result

    # ── Core loop ────────────────────────────────────────────

    def scan(self, blob, output: OutputBuffer) -> ScanResult:
        """Run one full pass over `blob`, appending into `output`.

        Raises CapacityExceeded if a decoded fragment does not fit; every
        other per-block error is recorded in the result and skipped.
        """
        opts = self.options
        size = len(blob)
        if opts.start_offset < 0:
            raise ValueError(f"start offset must be >= 0, got {opts.start_offset}")
        if opts.start_offset > size:
            logger.warning("Start offset %#x is past the end of the input (%d bytes)",
                           opts.start_offset, size)

        result = ScanResult(input_size=size, capacity=output.capacity,
                            start_offset=opts.start_offset)
        using_mmap = self.progress.using_mmap
        self.progress = ScanProgress(total_bytes=size, using_mmap=using_mmap)
        start_time = time.time()
        last_notify = 0.0
        cursor = opts.start_offset

        while cursor + MAGIC_SIZE <= size:
            self.progress.state = ScanState.SCANNING
            pos = blob.find(BLOCK_MAGIC_PREFIX, cursor, size)
            if pos == -1 or pos + MAGIC_SIZE > size:
                break

            variant = classify(blob, pos)
            if variant is None:
                cursor = pos + 1
                continue
            if variant is BlockVariant.END_OF_STREAM:
                logger.debug("Stray end-of-stream marker at %#x", pos)
                cursor = pos + (1 if opts.rescan_overlaps else MAGIC_SIZE)
                continue

            self.progress.state = ScanState.BLOCK_FOUND
            report = BlockReport(offset=pos, variant=variant)
            block = self._dispatch(blob, pos, variant, output, report)
            if block is None:
                result.failures.append(report)
                self.progress.blocks_failed += 1
                self._notify_block(report)
                cursor = pos + 1
                continue

            self.progress.state = ScanState.APPENDING
            report.output_offset = output.append(block.fragment)
            report.size = block.size
            report.consumed_end = block.consumed_end
            report.declared_raw = block.declared_raw
            result.blocks.append(report)
            self.progress.blocks_found += 1
            self.progress.bytes_decoded += block.size
            logger.info("%s block at %#x: %d bytes decoded",
                        variant.label, pos, block.size)
            self._notify_block(report)

            if opts.sniff:
                for match in sniff_all(block.fragment, report.output_offset):
                    result.superblocks.append(match)
                    if self._on_superblock:
                        self._on_superblock(match)

            if opts.rescan_overlaps:
                cursor = pos + 1
            else:
                cursor = max(block.consumed_end, pos + 1)

            now = time.time()
            self.progress.scanned_bytes = min(cursor, size)
            self.progress.elapsed_time = now - start_time
            if now - last_notify >= self.PROGRESS_INTERVAL:
                last_notify = now
                self._notify_progress()

        self.progress.state = ScanState.DONE
        self.progress.scanned_bytes = size
        self.progress.elapsed_time = time.time() - start_time
        self._notify_progress()

        result.bytes_written = output.position
        result.elapsed_time = self.progress.elapsed_time
        logger.info(
            "Scan done: %d block(s) decoded, %d failed, %s written",
            len(result.blocks), len(result.failures), result.bytes_written_human,
        )
        return result

    def _dispatch(self, blob, pos: int, variant: BlockVariant,
                  output: OutputBuffer, report: BlockReport) -> Optional[DecodedBlock]:
        """Extent + decode. Returns None (and fills `report`) on a block error."""
        try:
            extent = find_extent(blob, pos, variant,
                                 legacy=self.options.legacy_marker_scan)
            self.progress.state = ScanState.DISPATCHING
            return decode_block(blob, pos, variant, extent,
                                output.remaining, self._codec)
        except BlockError as e:
            report.error = type(e).__name__
            report.message = str(e)
            logger.warning("Skipping %s block at %#x: %s", variant.label, pos, e)
            return None

    def _notify_block(self, report: BlockReport):
        if self._on_block:
            self._on_block(report)

    def _notify_progress(self):
        if self._on_progress:
            self._on_progress(self.progress)


def _human_size(nbytes: int) -> str:
    size = float(nbytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
