"""
Codec Adapter — one stable call around the LZFSE reference decoder.

The decoder itself (entropy coding, match copies) lives in liblzfse; this
module only bounds what goes in and checks what comes out. liblzfse decodes
whole streams, so a bounded slice that does not already end in "bvx$" gets
the marker appended before decoding.
"""

import logging

import liblzfse

from .errors import CodecOverflow, DecodeFailed
from .signatures import END_OF_STREAM_MAGIC

logger = logging.getLogger(__name__)


class LzfseCodec:
    """Decode LZFSE/LZVN streams with explicit source and output limits."""

    name = "liblzfse"

    def decode(self, src, src_limit: int, dst_capacity: int) -> bytes:
        """
        Decode at most `src_limit` bytes of `src`.

        Returns the decoded bytes, never more than `dst_capacity`.
        Raises DecodeFailed if the decoder rejects the input or produces
        nothing, CodecOverflow if it produces more than `dst_capacity`.
        """
        if src_limit <= 0:
            raise DecodeFailed("empty source")
        stream = bytes(src[:src_limit])
        if not stream.endswith(END_OF_STREAM_MAGIC):
            stream += END_OF_STREAM_MAGIC

        try:
            out = self._decompress(stream)
        except Exception as e:
            detail = str(e) or "decoder rejected stream"
            raise DecodeFailed(f"{self.name}: {type(e).__name__}: {detail}") from e

        if not out:
            raise DecodeFailed(f"{self.name}: no bytes decoded")
        if len(out) > dst_capacity:
            raise CodecOverflow(len(out), dst_capacity)
        return out

    def _decompress(self, stream: bytes) -> bytes:
        return liblzfse.decompress(stream)
