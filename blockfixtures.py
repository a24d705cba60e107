"""
Synthetic block builders + a stand-in codec for the test suite.

FakeCodec keeps the framing tests independent of the native decoder:
  • bvxn        — the payload after the 12-byte header is the decoded text,
                  byte for byte.
  • bvx2        — the "compressed" payload is the decoded text itself, up to
                  the last end marker; any inner "bvx?" tokens are dropped.
  • bvx1        — the payload is repeated until n_raw_bytes.
A payload containing b"BAD" makes the decode fail.
"""

import re
import struct

from rootex.codec import LzfseCodec
from rootex.framing import (
    LZVN_HEADER,
    V1_HEADER,
    V1_HEADER_SIZE,
    parse_lzvn_header,
    parse_v1_header,
)

END = b"bvx$"
_TOKEN = re.compile(rb"bvx.", re.DOTALL)


class FakeCodec(LzfseCodec):
    name = "fake"

    def __init__(self):
        self.calls: list[tuple[int, int]] = []

    def decode(self, src, src_limit: int, dst_capacity: int) -> bytes:
        self.calls.append((src_limit, dst_capacity))
        return super().decode(src, src_limit, dst_capacity)

    def _decompress(self, stream: bytes) -> bytes:
        magic = stream[:4]
        if magic == b"bvxn":
            header = parse_lzvn_header(stream, 0)
            payload = stream[LZVN_HEADER.size:LZVN_HEADER.size + header.n_payload_bytes]
            _check(payload)
            return payload
        if magic == b"bvx1":
            header = parse_v1_header(stream, 0)
            payload = stream[V1_HEADER_SIZE:V1_HEADER_SIZE + header.n_payload_bytes]
            _check(payload)
            if not payload:
                return b""
            reps = header.n_raw_bytes // len(payload) + 1
            return (payload * reps)[:header.n_raw_bytes]
        body = stream[4:stream.rindex(END)]
        _check(body)
        return _TOKEN.sub(b"", body)


def _check(payload: bytes):
    if b"BAD" in payload:
        raise ValueError("corrupt payload")


def make_lzvn_block(text: bytes, n_raw: int = None) -> bytes:
    """bvxn block in the FakeCodec format (no end marker)."""
    n_raw = len(text) if n_raw is None else n_raw
    return LZVN_HEADER.pack(b"bvxn", n_raw, len(text)) + text


def make_v1_block(payload: bytes, n_raw: int) -> bytes:
    """LZFSE v1 block: 772-byte header (zeroed tables) + payload."""
    fields = [b"bvx1", n_raw, len(payload), 0, 0, 0, 0]
    fields += [0] + [0] * 4 + [0] + [0] * 3 + [0] * 360
    header = V1_HEADER.pack(*fields)
    return header + b"\x00" * (V1_HEADER_SIZE - len(header)) + payload


def make_raw_block(data: bytes) -> bytes:
    return b"bvx-" + struct.pack("<I", len(data)) + data


def make_stream_block(magic: bytes, text: bytes) -> bytes:
    """bvx2 block in the FakeCodec format (no end marker)."""
    return magic + text


def apfs_volume_object(name: str, size: int = 4096) -> bytes:
    """Minimal APFS volume superblock object carrying `name`."""
    obj = bytearray(size)
    obj[32:36] = b"APSB"
    raw = name.encode("utf-8")
    obj[0x2C0:0x2C0 + len(raw)] = raw
    return bytes(obj)


def apfs_container_object(size: int = 4096) -> bytes:
    obj = bytearray(size)
    obj[32:36] = b"NXSB"
    return bytes(obj)


def filler(n: int) -> bytes:
    """Bytes that never contain a "bvx" prefix."""
    return (bytes(range(256)) * (n // 256 + 1))[:n]
