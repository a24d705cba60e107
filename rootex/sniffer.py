"""
Superblock Sniffer — spot APFS container/volume superblocks in decoded output.

Advisory only: a match is reported with its offset in the output stream and,
for volumes, the embedded volume name. A missing or empty name is not an
error.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from .signatures import MAGIC_SIZE, SUPERBLOCK_MAGICS, SuperblockSignature

logger = logging.getLogger(__name__)


@dataclass
class SuperblockMatch:
    signature: SuperblockSignature
    offset: int                  # Offset of the magic in the output stream
    name: Optional[str] = None

    @property
    def description(self) -> str:
        return self.signature.description


def read_name(fragment: bytes, magic_pos: int,
              signature: SuperblockSignature) -> Optional[str]:
    """Read the NUL-terminated name field belonging to a magic at `magic_pos`."""
    info = signature.value
    if info.name_offset is None:
        return None
    start = magic_pos + (info.name_offset - info.magic_offset)
    if start < 0 or start >= len(fragment):
        return None
    raw = bytes(fragment[start:start + info.name_length])
    raw = raw.split(b"\x00", 1)[0]
    if not raw:
        return None
    return raw.decode("utf-8", errors="replace")


def sniff_all(fragment: bytes, base_offset: int = 0) -> Iterator[SuperblockMatch]:
    """Yield every known superblock signature in `fragment`, in order."""
    hits = []
    for magic, signature in SUPERBLOCK_MAGICS.items():
        pos = fragment.find(magic)
        while pos != -1:
            hits.append((pos, signature))
            pos = fragment.find(magic, pos + 1)
    for pos, signature in sorted(hits, key=lambda h: h[0]):
        name = read_name(fragment, pos, signature)
        logger.debug("%s at %#x%s", signature.description, base_offset + pos,
                     f" ({name})" if name else "")
        yield SuperblockMatch(signature=signature, offset=base_offset + pos,
                              name=name)


def sniff(fragment: bytes, base_offset: int = 0) -> Optional[SuperblockMatch]:
    """Return the first superblock signature in `fragment`, if any."""
    if len(fragment) < MAGIC_SIZE:
        return None
    return next(sniff_all(fragment, base_offset), None)
