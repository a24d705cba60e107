"""
Error taxonomy for a scan run.

Two families:
  • Fatal (RootexError)  — abort the run, mapped to a process exit code.
  • Per-block (BlockError) — the driver logs it, skips the block and keeps
    scanning at the next byte.
"""


class RootexError(Exception):
    """Base class for errors that abort a whole run."""
    exit_code = 1


class InputNotFound(RootexError):
    exit_code = 1


class InputOpenFailed(RootexError):
    exit_code = 1


class OutputOpenFailed(RootexError):
    exit_code = 2


class MappingFailed(RootexError):
    exit_code = 3


class CapacityExceeded(RootexError):
    """Decoded content does not fit in the remaining output capacity."""
    exit_code = 4

    def __init__(self, needed: int, available: int, offset: int = -1):
        self.needed = needed
        self.available = available
        self.offset = offset
        where = f" (block at {offset:#x})" if offset >= 0 else ""
        super().__init__(
            f"output capacity exceeded{where}: "
            f"need {needed} bytes, {available} left"
        )


class BlockError(Exception):
    """A single block could not be decoded; the scan continues."""

    def __init__(self, message: str, offset: int = -1):
        self.offset = offset
        super().__init__(message)


class DecodeFailed(BlockError):
    pass


class CodecOverflow(DecodeFailed):
    """The codec produced more bytes than the caller allowed."""

    def __init__(self, produced: int, capacity: int, offset: int = -1):
        self.produced = produced
        self.capacity = capacity
        super().__init__(
            f"decoder produced {produced} bytes, capacity is {capacity}",
            offset,
        )


class MalformedHeader(BlockError):
    pass
