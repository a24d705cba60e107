"""
Signature Database — LZFSE block magics & filesystem superblocks.

DESIGN RATIONALE
────────────────
Two families of 4-byte signatures:
  • Block magics     — "bvx*" headers written by the LZFSE encoder. Each
                       variant has its own header shape and length rule.
  • Superblock magics — APFS container (NXSB) and volume (APSB) objects that
                       show up in the decoded output of a rootfs image.

All magics are literal byte strings, compared byte-for-byte. They must match
the upstream codec / APFS on-disk definitions exactly.

Exported for the scanner:
  • BlockVariant        — enum of block framings, value = magic bytes
  • BLOCK_MAGICS        — dict magic → BlockVariant
  • SuperblockSignature — enum of superblock types, value = SuperblockInfo
"""

import enum
from dataclasses import dataclass
from typing import Optional


MAGIC_SIZE = 4

# Every block magic starts with this prefix; the scanner uses it to jump
# between candidates with bytes.find() instead of testing every offset.
BLOCK_MAGIC_PREFIX = b"bvx"


# ══════════════════════════════════════════════════════════════
#  B L O C K   M A G I C S
# ══════════════════════════════════════════════════════════════

class BlockVariant(enum.Enum):
    """Block framing, identified by the 4-byte magic at the block start."""
    LZVN = b"bvxn"            # LZVN-compressed block
    LZFSE_V1 = b"bvx1"        # LZFSE, uncompressed frequency tables
    LZFSE_V2 = b"bvx2"        # LZFSE, compressed frequency tables
    RAW = b"bvx-"             # Uncompressed block
    END_OF_STREAM = b"bvx$"   # Terminates a run of blocks

    @property
    def magic(self) -> bytes:
        return self.value

    @property
    def label(self) -> str:
        return _VARIANT_LABELS[self]


_VARIANT_LABELS = {
    BlockVariant.LZVN: "lzvn",
    BlockVariant.LZFSE_V1: "lzfse-v1",
    BlockVariant.LZFSE_V2: "lzfse-v2",
    BlockVariant.RAW: "raw",
    BlockVariant.END_OF_STREAM: "end-of-stream",
}

BLOCK_MAGICS: dict[bytes, BlockVariant] = {v.magic: v for v in BlockVariant}

END_OF_STREAM_MAGIC = BlockVariant.END_OF_STREAM.magic


# ══════════════════════════════════════════════════════════════
#  S U P E R B L O C K   S I G N A T U R E S
# ══════════════════════════════════════════════════════════════

# APFS objects start with a 32-byte obj_phys_t header (checksum, oid, xid,
# type, subtype); the superblock magic follows it.
APFS_OBJ_HEADER_SIZE = 32

APFS_VOLNAME_OFFSET = 0x2C0
APFS_VOLNAME_LEN = 256


@dataclass(frozen=True)
class SuperblockInfo:
    """Describes one recognisable superblock."""
    magic: bytes
    description: str
    magic_offset: int                   # Magic position within the object
    name_offset: Optional[int] = None   # Embedded name field, if any
    name_length: int = 0


class SuperblockSignature(enum.Enum):
    CONTAINER = SuperblockInfo(
        magic=b"NXSB",
        description="APFS container superblock",
        magic_offset=APFS_OBJ_HEADER_SIZE,
    )
    VOLUME = SuperblockInfo(
        magic=b"APSB",
        description="APFS volume superblock",
        magic_offset=APFS_OBJ_HEADER_SIZE,
        name_offset=APFS_VOLNAME_OFFSET,
        name_length=APFS_VOLNAME_LEN,
    )

    @property
    def magic(self) -> bytes:
        return self.value.magic

    @property
    def description(self) -> str:
        return self.value.description


SUPERBLOCK_MAGICS: dict[bytes, SuperblockSignature] = {
    s.magic: s for s in SuperblockSignature
}
