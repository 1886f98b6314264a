from __future__ import annotations

import errno
import os
from typing import BinaryIO, Optional

from .constants import READ_BLOCK_SIZE
from .errors import TruncatedStreamError


def byte_view(data) -> memoryview:
    """Flat unsigned-byte view of any contiguous bytes-like object.

    ``len()`` of an ``array.array("I")`` or a multi-byte memoryview counts
    items, not bytes; ``nbytes`` of this view is always the byte length.
    Raises TypeError for objects that are not buffers.
    """
    return memoryview(data).cast("B")


def _read_block(f: BinaryIO, n: int) -> bytes:
    b = f.read(min(n, READ_BLOCK_SIZE))
    # Raw streams in non-blocking mode return None when no data is ready yet
    if b is None:
        raise BlockingIOError(errno.EAGAIN, "no data ready on a non-blocking stream")
    return b


def read_upto(f: BinaryIO, n: int) -> bytes:
    """Read until ``n`` bytes are collected or the stream reports EOF.

    Raw and socket-backed streams may hand back fewer bytes than asked for
    without being at EOF, so keep reading until a read returns nothing.
    Reads are capped at READ_BLOCK_SIZE so a corrupt length prefix does not
    allocate gigabytes before EOF is noticed.
    """
    first = _read_block(f, n)
    if not first or len(first) == n:
        return first
    buf = bytearray(first)
    while len(buf) < n:
        more = _read_block(f, n - len(buf))
        if not more:
            break
        buf += more
    return bytes(buf)


def read_exact(f: BinaryIO, n: int, what: str = "data") -> bytes:
    b = read_upto(f, n)
    if len(b) != n:
        raise TruncatedStreamError(
            f"Unexpected EOF reading {what}: expected {n} bytes, got {len(b)}",
            expected=n,
            available=len(b),
        )
    return b


def optional_read_exact(f: BinaryIO, n: int, what: str = "data") -> Optional[bytes]:
    """Like read_exact, but returns None when the stream is already at EOF.

    A partial read (some bytes, but fewer than ``n``) is still an error.
    """
    b = read_upto(f, n)
    if not b:
        return None
    if len(b) != n:
        raise TruncatedStreamError(
            f"Unexpected EOF reading {what}: expected {n} bytes, got {len(b)}",
            expected=n,
            available=len(b),
        )
    return b


def write_all(f: BinaryIO, data: bytes) -> None:
    view = byte_view(data)
    while view:
        n = f.write(view)
        # Buffered streams return None only in non-blocking mode
        if n is None:
            raise BlockingIOError(errno.EAGAIN, "stream would block")
        if n <= 0:
            raise OSError("short write: stream accepted no bytes")
        view = view[n:]


def truncate_at(path: str, length: int) -> None:
    if length < 0:
        raise ValueError("length must be non-negative")
    with open(path, "r+b") as f:
        f.truncate(length)
        f.flush()
        os.fsync(f.fileno())
