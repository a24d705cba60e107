# rootex — LZFSE block scanner & reassembly engine
# Pure-Python framing layer around the reference LZFSE decoder.
#
# Architecture (bottom → top):
#   errors       — Fatal and per-block error taxonomy (exit codes)
#   signatures   — Block magics (bvx*) + filesystem superblock signatures
#   mmap_reader  — Read-only input mapping + bounded output buffer
#   framing      — Block classifier, header parsing, extent finder
#   codec        — Adapter around liblzfse (external decompressor)
#   dispatch     — Per-variant decode parameters → decoded fragment
#   sniffer      — APFS superblock detection in decoded output
#   scanner      — Scan/reassembly driver (state machine over the blob)
