"""
Block Decoder Dispatch — per-variant codec bounds → decoded fragment.

  lzvn / lzfse-v2  source bounded by the extent, output by the remaining
                   capacity of the output buffer. lzvn output must match
                   the n_raw_bytes its header declares.
  lzfse-v1         exact bounds from the header (n_payload_bytes in,
                   n_raw_bytes out), checked against extent and capacity
                   before the codec is called.
  raw              straight copy of n_raw_bytes.

Dispatch never touches the output buffer; the driver appends.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import CapacityExceeded, CodecOverflow, DecodeFailed, MalformedHeader
from .framing import Extent, parse_lzvn_header, parse_raw_header, parse_v1_header
from .signatures import END_OF_STREAM_MAGIC, MAGIC_SIZE, BlockVariant

logger = logging.getLogger(__name__)


@dataclass
class DecodedBlock:
    """Result of decoding one block."""
    variant: BlockVariant
    offset: int                     # Block start in the input
    fragment: bytes
    consumed_end: int               # Input offset the scan may resume at
    declared_raw: Optional[int] = None   # Header-declared size, if any

    @property
    def size(self) -> int:
        return len(self.fragment)


def decode_block(blob, offset: int, variant: BlockVariant, extent: Extent,
                 capacity_left: int, codec) -> DecodedBlock:
    """Decode the block at `offset`.

    Raises:
        MalformedHeader   — header fields inconsistent with the blob.
        DecodeFailed      — codec rejected the payload.
        CapacityExceeded  — decoded content cannot fit in the output.
    """
    if variant is BlockVariant.RAW:
        return _decode_raw(blob, offset, capacity_left)
    if variant is BlockVariant.LZFSE_V1:
        return _decode_v1(blob, offset, extent, capacity_left, codec)
    if variant in (BlockVariant.LZVN, BlockVariant.LZFSE_V2):
        return _decode_stream(blob, offset, variant, extent, capacity_left, codec)
    raise MalformedHeader(f"{variant.label} is not a decodable block", offset)


def _resume_after(blob, end: int) -> int:
    """Step over an end-of-stream marker sitting right at `end`."""
    if blob[end:end + MAGIC_SIZE] == END_OF_STREAM_MAGIC:
        return end + MAGIC_SIZE
    return end


def _decode_raw(blob, offset: int, capacity_left: int) -> DecodedBlock:
    header = parse_raw_header(blob, offset)
    start = offset + header.size
    end = start + header.n_raw_bytes
    if end > len(blob):
        raise MalformedHeader(
            f"raw block declares {header.n_raw_bytes} bytes, "
            f"only {len(blob) - start} left in input",
            offset,
        )
    if header.n_raw_bytes > capacity_left:
        raise CapacityExceeded(header.n_raw_bytes, capacity_left, offset)
    return DecodedBlock(
        variant=BlockVariant.RAW,
        offset=offset,
        fragment=bytes(blob[start:end]),
        consumed_end=_resume_after(blob, end),
        declared_raw=header.n_raw_bytes,
    )


def _decode_v1(blob, offset: int, extent: Extent, capacity_left: int,
               codec) -> DecodedBlock:
    header = parse_v1_header(blob, offset)
    if header.n_raw_bytes == 0:
        raise MalformedHeader("lzfse-v1 header declares 0 raw bytes", offset)
    block_end = offset + header.block_size
    if block_end > extent.end:
        raise MalformedHeader(
            f"lzfse-v1 payload of {header.n_payload_bytes} bytes runs past "
            f"block extent ending at {extent.end:#x}",
            offset,
        )
    # Trust the declared size only after checking it against what is left.
    if header.n_raw_bytes > capacity_left:
        raise CapacityExceeded(header.n_raw_bytes, capacity_left, offset)

    fragment = codec.decode(blob[offset:block_end], header.block_size,
                            header.n_raw_bytes)
    if len(fragment) != header.n_raw_bytes:
        raise DecodeFailed(
            f"lzfse-v1 decoded {len(fragment)} bytes, header declares "
            f"{header.n_raw_bytes}",
            offset,
        )
    return DecodedBlock(
        variant=BlockVariant.LZFSE_V1,
        offset=offset,
        fragment=fragment,
        consumed_end=_resume_after(blob, block_end),
        declared_raw=header.n_raw_bytes,
    )


def _decode_stream(blob, offset: int, variant: BlockVariant, extent: Extent,
                   capacity_left: int, codec) -> DecodedBlock:
    declared_raw = None
    if variant is BlockVariant.LZVN:
        declared_raw = parse_lzvn_header(blob, offset).n_raw_bytes
    if not extent.terminated:
        logger.debug("%s block at %#x has no end marker; decoding to end of input",
                     variant.label, offset)
    if capacity_left <= 0:
        raise CapacityExceeded(1, capacity_left, offset)
    try:
        fragment = codec.decode(blob[offset:extent.end], extent.length,
                                capacity_left)
    except CodecOverflow as e:
        raise CapacityExceeded(e.produced, capacity_left, offset) from e
    if declared_raw is not None and len(fragment) != declared_raw:
        raise DecodeFailed(
            f"lzvn decoded {len(fragment)} bytes, header declares {declared_raw}",
            offset,
        )
    return DecodedBlock(
        variant=variant,
        offset=offset,
        fragment=fragment,
        consumed_end=extent.end,
        declared_raw=declared_raw,
    )
