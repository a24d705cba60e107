"""
Framing tests — classifier bounds, header parsing, extent finder (corrected
and legacy end-marker scans), per-variant dispatch bounds.
"""
import struct

from rootex.dispatch import decode_block
from rootex.errors import CapacityExceeded, DecodeFailed, MalformedHeader
from rootex.framing import (
    V1_HEADER_SIZE,
    classify,
    find_extent,
    parse_lzvn_header,
    parse_raw_header,
    parse_v1_header,
)
from rootex.signatures import BlockVariant

from blockfixtures import (
    END,
    FakeCodec,
    filler,
    make_lzvn_block,
    make_raw_block,
    make_stream_block,
    make_v1_block,
)


def test_classify_variants():
    print("── Test: classify ──")
    for magic, variant in (
        (b"bvxn", BlockVariant.LZVN),
        (b"bvx1", BlockVariant.LZFSE_V1),
        (b"bvx2", BlockVariant.LZFSE_V2),
        (b"bvx-", BlockVariant.RAW),
        (b"bvx$", BlockVariant.END_OF_STREAM),
    ):
        blob = filler(10) + magic + filler(10)
        assert classify(blob, 10) is variant
    assert classify(b"bvx3xxxx", 0) is None
    assert classify(b"nxvb", 0) is None
    print("  ✅ classify: PASS")


def test_classify_refuses_short_window():
    blob = b"..bvx"
    # Last full window is at len - 4
    assert classify(blob, len(blob) - 4) is None
    for offset in (len(blob) - 3, len(blob), -1):
        try:
            classify(blob, offset)
        except ValueError:
            pass
        else:
            raise AssertionError(f"classify read past the blob at {offset}")


def test_parse_headers():
    raw = make_raw_block(b"hello")
    h = parse_raw_header(raw, 0)
    assert h.magic == b"bvx-" and h.n_raw_bytes == 5 and h.size == 8

    lzvn = b"bvxn" + struct.pack("<II", 300, 120)
    h = parse_lzvn_header(lzvn, 0)
    assert (h.n_raw_bytes, h.n_payload_bytes) == (300, 120)

    v1 = make_v1_block(b"\x11" * 40, 100)
    assert V1_HEADER_SIZE == 772
    h = parse_v1_header(v1, 0)
    assert h.n_raw_bytes == 100
    assert h.n_payload_bytes == 40
    assert h.block_size == 772 + 40

    try:
        parse_v1_header(v1[:500], 0)
    except MalformedHeader:
        pass
    else:
        raise AssertionError("truncated v1 header accepted")


def test_extent_stops_at_end_marker():
    block = make_stream_block(b"bvx2", b"payload")
    blob = filler(16) + block + END + filler(16)
    ext = find_extent(blob, 16, BlockVariant.LZFSE_V2)
    assert ext.terminated
    assert ext.start == 16
    assert ext.end == 16 + len(block) + 4
    assert blob[ext.end - 4:ext.end] == END


def test_extent_without_marker_runs_to_end():
    blob = filler(8) + make_stream_block(b"bvx2", b"no terminator here")
    ext = find_extent(blob, 8, BlockVariant.LZFSE_V2)
    assert not ext.terminated
    assert ext.end == len(blob)


def test_extent_lzvn_uses_declared_payload():
    print("── Test: lzvn extent ──")
    text = b"literal bvx$ inside the payload"
    block = make_lzvn_block(text)
    blob = filler(8) + block + END + filler(8)
    ext = find_extent(blob, 8, BlockVariant.LZVN)
    assert ext.terminated
    assert ext.end == 8 + 12 + len(text) + 4

    # No trailing marker: the block still ends at its declared length
    blob = filler(8) + block + filler(8)
    ext = find_extent(blob, 8, BlockVariant.LZVN)
    assert ext.terminated and ext.end == 8 + len(block)

    blob = b"bvxn" + struct.pack("<II", 100, 5000) + filler(64)
    try:
        find_extent(blob, 0, BlockVariant.LZVN)
    except MalformedHeader:
        pass
    else:
        raise AssertionError("lzvn payload past the blob accepted")
    print("  ✅ lzvn extent: PASS")


def test_dispatch_lzvn_payload_containing_marker():
    codec = FakeCodec()
    text = b"bvx$ is the end-of-stream magic; " + b"a" * 64
    blob = make_lzvn_block(text) + END + filler(16)
    ext = find_extent(blob, 0, BlockVariant.LZVN)
    out = decode_block(blob, 0, BlockVariant.LZVN, ext, 1000, codec)
    assert out.fragment == text
    assert out.declared_raw == len(text)
    assert out.consumed_end == 12 + len(text) + 4


def test_dispatch_lzvn_size_mismatch():
    blob = make_lzvn_block(b"short", n_raw=50) + END
    ext = find_extent(blob, 0, BlockVariant.LZVN)
    try:
        decode_block(blob, 0, BlockVariant.LZVN, ext, 1000, FakeCodec())
    except DecodeFailed:
        pass
    else:
        raise AssertionError("lzvn size mismatch accepted")


def test_extent_raw_uses_declared_length():
    blob = make_raw_block(b"abcde") + END + filler(10)
    ext = find_extent(blob, 0, BlockVariant.RAW)
    assert ext.end == 8 + 5 + 4
    # Declared length past the blob is clamped, not trusted
    blob = b"bvx-" + struct.pack("<I", 1000) + b"short"
    ext = find_extent(blob, 0, BlockVariant.RAW)
    assert ext.end == len(blob) and not ext.terminated


def test_legacy_marker_scan():
    print("── Test: legacy marker scan ──")
    block = make_lzvn_block(b"payload") + END + filler(64)
    # The old comparison never matches a real block magic
    ext = find_extent(block, 0, BlockVariant.LZVN, legacy=True)
    assert not ext.terminated and ext.end == len(block)

    # ...but does match when first word + delta hits the marker value
    marker = int.from_bytes(END, "little")
    blob = (marker - 8).to_bytes(4, "little") + filler(40)
    ext = find_extent(blob, 0, BlockVariant.LZFSE_V2, legacy=True)
    assert ext.terminated and ext.end == 12
    print("  ✅ legacy marker scan: PASS")


def test_dispatch_v1_uses_header_bounds():
    codec = FakeCodec()
    block = make_v1_block(b"\x11" * 40, 100)
    blob = block + END
    ext = find_extent(blob, 0, BlockVariant.LZFSE_V1)
    out = decode_block(blob, 0, BlockVariant.LZFSE_V1, ext, 1000, codec)
    assert out.size == 100
    assert out.declared_raw == 100
    assert out.consumed_end == len(blob)
    assert codec.calls == [(772 + 40, 100)]


def test_dispatch_v1_payload_past_extent():
    block = make_v1_block(b"\x11" * 40, 100)
    # Payload length claims more than the blob holds
    blob = block[:8] + struct.pack("<I", 5000) + block[12:] + END
    ext = find_extent(blob, 0, BlockVariant.LZFSE_V1)
    try:
        decode_block(blob, 0, BlockVariant.LZFSE_V1, ext, 1000, FakeCodec())
    except MalformedHeader:
        pass
    else:
        raise AssertionError("payload past extent accepted")


def test_dispatch_v1_capacity_checked_before_decode():
    codec = FakeCodec()
    blob = make_v1_block(b"\x11" * 40, 100) + END
    ext = find_extent(blob, 0, BlockVariant.LZFSE_V1)
    try:
        decode_block(blob, 0, BlockVariant.LZFSE_V1, ext, 99, codec)
    except CapacityExceeded as e:
        assert e.needed == 100 and e.available == 99
    else:
        raise AssertionError("declared size larger than capacity accepted")
    assert codec.calls == []


def test_dispatch_stream_bounded_by_extent_and_capacity():
    codec = FakeCodec()
    blob = filler(4) + make_lzvn_block(b"0123456789") + END + b"trailing"
    ext = find_extent(blob, 4, BlockVariant.LZVN)
    out = decode_block(blob, 4, BlockVariant.LZVN, ext, 64, codec)
    assert out.fragment == b"0123456789"
    assert codec.calls == [(ext.length, 64)]
    assert out.consumed_end == ext.end

    # Output larger than what is left in the buffer
    try:
        decode_block(blob, 4, BlockVariant.LZVN, ext, 5, FakeCodec())
    except CapacityExceeded as e:
        assert e.needed == 10
    else:
        raise AssertionError("codec overflow not reported")


def test_dispatch_reports_decode_failure():
    blob = make_stream_block(b"bvx2", b"BAD data") + END
    ext = find_extent(blob, 0, BlockVariant.LZFSE_V2)
    try:
        decode_block(blob, 0, BlockVariant.LZFSE_V2, ext, 100, FakeCodec())
    except DecodeFailed:
        pass
    else:
        raise AssertionError("decoder error swallowed")


def test_codec_error_message_is_never_blank():
    class SilentCodec(FakeCodec):
        def _decompress(self, stream):
            raise RuntimeError()

    try:
        SilentCodec().decode(b"bvx2abc", 7, 100)
    except DecodeFailed as e:
        assert "RuntimeError" in str(e)
        assert "decoder rejected stream" in str(e)
    else:
        raise AssertionError("decoder error swallowed")


def main():
    print("=" * 60)
    print("  rootex — Framing Tests")
    print("=" * 60)
    test_classify_variants()
    test_classify_refuses_short_window()
    test_parse_headers()
    test_extent_stops_at_end_marker()
    test_extent_without_marker_runs_to_end()
    test_extent_lzvn_uses_declared_payload()
    test_dispatch_lzvn_payload_containing_marker()
    test_dispatch_lzvn_size_mismatch()
    test_extent_raw_uses_declared_length()
    test_legacy_marker_scan()
    test_dispatch_v1_uses_header_bounds()
    test_dispatch_v1_payload_past_extent()
    test_dispatch_v1_capacity_checked_before_decode()
    test_dispatch_stream_bounded_by_extent_and_capacity()
    test_dispatch_reports_decode_failure()
    test_codec_error_message_is_never_blank()
    print()
    print("  ALL TESTS PASSED ✅")


if __name__ == "__main__":
    main()
