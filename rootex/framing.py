"""
Block Framing — classify "bvx*" magics, parse headers, find block extents.

HEADER LAYOUTS (little-endian, as written by the reference encoder)
──────────────────────────────────────────────────────────────────
  bvx-  raw        magic, n_raw_bytes                        (8 bytes)
  bvxn  lzvn       magic, n_raw_bytes, n_payload_bytes       (12 bytes)
  bvx1  lzfse v1   magic, n_raw_bytes, n_payload_bytes,
                   n_literals, n_matches,
                   n_literal_payload_bytes, n_lmd_payload_bytes,
                   literal_bits, literal_state[4], lmd_bits,
                   l/m/d_state, l/m/d/literal freq tables    (772 bytes)
  bvx2  lzfse v2   packed header, sizes not interpreted here
  bvx$  end of stream

EXTENT RULES
────────────
  • raw          — declared length (header + n_raw_bytes).
  • lzvn         — declared length (header + n_payload_bytes). LZVN copies
                   literals verbatim, so the payload may itself contain
                   "bvx$" and cannot be bounded by a marker search.
  • v1/v2        — scan forward for the "bvx$" marker; the extent ends just
                   past it. No marker → the extent runs to the end of the
                   blob and is reported as unterminated.
"""

import struct
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import MalformedHeader
from .signatures import (
    BLOCK_MAGICS,
    END_OF_STREAM_MAGIC,
    MAGIC_SIZE,
    BlockVariant,
)

logger = logging.getLogger(__name__)

RAW_HEADER = struct.Struct("<4sI")
LZVN_HEADER = struct.Struct("<4sII")
# Packed field layout of lzfse_compressed_block_header_v1 (770 bytes); the
# C struct is padded to a 4-byte boundary, so the payload starts at 772.
V1_HEADER = struct.Struct("<4sIIIIIIi4Hi3H20H20H64H256H")
V1_HEADER_SIZE = (V1_HEADER.size + 3) & ~3

_END_OF_STREAM_U32 = int.from_bytes(END_OF_STREAM_MAGIC, "little")


@dataclass
class RawBlockHeader:
    magic: bytes
    n_raw_bytes: int

    @property
    def size(self) -> int:
        return RAW_HEADER.size


@dataclass
class LzvnBlockHeader:
    magic: bytes
    n_raw_bytes: int
    n_payload_bytes: int

    @property
    def size(self) -> int:
        return LZVN_HEADER.size


@dataclass
class BlockHeaderV1:
    """LZFSE v1 header. Only the two size fields matter to the framing
    layer; the encoder state is carried for diagnostics."""
    magic: bytes
    n_raw_bytes: int
    n_payload_bytes: int
    n_literals: int = 0
    n_matches: int = 0
    n_literal_payload_bytes: int = 0
    n_lmd_payload_bytes: int = 0
    literal_bits: int = 0
    lmd_bits: int = 0

    @property
    def size(self) -> int:
        return V1_HEADER_SIZE

    @property
    def block_size(self) -> int:
        """Header plus encoded payload."""
        return V1_HEADER_SIZE + self.n_payload_bytes


@dataclass
class Extent:
    """Input range a block occupies: [start, end)."""
    start: int
    end: int
    terminated: bool = True     # False if clamped at the end of the blob

    @property
    def length(self) -> int:
        return self.end - self.start


# ─────────────────────────────────────────────────────────────
#  Classifier
# ─────────────────────────────────────────────────────────────

def classify(blob, offset: int) -> Optional[BlockVariant]:
    """Return the block variant whose magic sits at `offset`, or None.

    The caller guarantees 4 readable bytes; anything else is a bug in the
    caller, not a "no match".
    """
    if offset < 0 or offset + MAGIC_SIZE > len(blob):
        raise ValueError(
            f"classify needs {MAGIC_SIZE} bytes at {offset:#x}, "
            f"blob is {len(blob)} bytes"
        )
    return BLOCK_MAGICS.get(bytes(blob[offset:offset + MAGIC_SIZE]))


# ─────────────────────────────────────────────────────────────
#  Header parsing
# ─────────────────────────────────────────────────────────────

def _unpack(fmt: struct.Struct, blob, offset: int, what: str) -> tuple:
    if offset + fmt.size > len(blob):
        raise MalformedHeader(
            f"{what} header truncated: need {fmt.size} bytes at {offset:#x}, "
            f"{max(0, len(blob) - offset)} available",
            offset,
        )
    return fmt.unpack_from(blob, offset)


def parse_raw_header(blob, offset: int) -> RawBlockHeader:
    magic, n_raw = _unpack(RAW_HEADER, blob, offset, "raw")
    return RawBlockHeader(magic=magic, n_raw_bytes=n_raw)


def parse_lzvn_header(blob, offset: int) -> LzvnBlockHeader:
    magic, n_raw, n_payload = _unpack(LZVN_HEADER, blob, offset, "lzvn")
    return LzvnBlockHeader(magic=magic, n_raw_bytes=n_raw,
                           n_payload_bytes=n_payload)


def parse_v1_header(blob, offset: int) -> BlockHeaderV1:
    if offset + V1_HEADER_SIZE > len(blob):
        raise MalformedHeader(
            f"lzfse-v1 header truncated at {offset:#x}", offset,
        )
    f = V1_HEADER.unpack_from(blob, offset)
    # f[8:12] literal_state, f[13:16] l/m/d state, f[16:] frequency tables
    return BlockHeaderV1(
        magic=f[0],
        n_raw_bytes=f[1],
        n_payload_bytes=f[2],
        n_literals=f[3],
        n_matches=f[4],
        n_literal_payload_bytes=f[5],
        n_lmd_payload_bytes=f[6],
        literal_bits=f[7],
        lmd_bits=f[12],
    )


# ─────────────────────────────────────────────────────────────
#  Extent finder
# ─────────────────────────────────────────────────────────────

def find_extent(blob, offset: int, variant: BlockVariant,
                legacy: bool = False) -> Extent:
    """Determine where the block starting at `offset` ends.

    `legacy` reproduces the old end-marker test, which compared the block's
    own first word plus the scan distance against the marker value instead
    of reading the word at each position. It applies to every compressed
    variant, lzvn included.

    Raises MalformedHeader when a header does not fit in the blob, or when
    an lzvn header declares a payload past the end of it.
    """
    size = len(blob)
    if offset < 0 or offset > size:
        raise ValueError(f"offset {offset:#x} outside blob of {size} bytes")

    if variant is BlockVariant.RAW:
        header = parse_raw_header(blob, offset)
        end = offset + header.size + header.n_raw_bytes
        if end > size:
            return Extent(offset, size, terminated=False)
        return _absorb_marker(blob, offset, end)

    if variant is BlockVariant.END_OF_STREAM:
        return Extent(offset, min(offset + MAGIC_SIZE, size))

    if legacy:
        return _legacy_marker_extent(blob, offset)
    if variant is BlockVariant.LZVN:
        header = parse_lzvn_header(blob, offset)
        end = offset + header.size + header.n_payload_bytes
        if end > size:
            raise MalformedHeader(
                f"lzvn payload of {header.n_payload_bytes} bytes runs past "
                f"the end of input ({size} bytes)",
                offset,
            )
        return _absorb_marker(blob, offset, end)
    return _marker_extent(blob, offset)


def _absorb_marker(blob, start: int, end: int) -> Extent:
    """Extend `end` over an end-of-stream marker that directly follows it."""
    if blob[end:end + MAGIC_SIZE] == END_OF_STREAM_MAGIC:
        end += MAGIC_SIZE
    return Extent(start, end)


def _marker_extent(blob, offset: int) -> Extent:
    size = len(blob)
    # Bounded search: find() never reads past the blob.
    pos = blob.find(END_OF_STREAM_MAGIC, offset + MAGIC_SIZE, size)
    if pos == -1:
        logger.debug("No end-of-stream marker after %#x", offset)
        return Extent(offset, size, terminated=False)
    return Extent(offset, pos + MAGIC_SIZE)


def _legacy_marker_extent(blob, offset: int) -> Extent:
    size = len(blob)
    if offset + MAGIC_SIZE > size:
        return Extent(offset, size, terminated=False)
    head = int.from_bytes(blob[offset:offset + MAGIC_SIZE], "little")
    # The old loop stopped at the first delta with head + delta == marker;
    # only one delta can satisfy that, so solve for it directly.
    delta = (_END_OF_STREAM_U32 - head) & 0xFFFFFFFF
    if offset + delta + MAGIC_SIZE <= size:
        return Extent(offset, offset + delta + MAGIC_SIZE)
    return Extent(offset, size, terminated=False)
