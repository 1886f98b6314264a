from __future__ import annotations

import os
from typing import BinaryIO, Iterator, Optional, Tuple

from .constants import DEFAULT_BUFFER_SIZE, LENGTH_PREFIX, PREFIX_SIZE
from .errors import ProtocolError, SeqDataError, TruncatedStreamError
from .format import NO_MAGIC_NO_HEADER, SeqDataFormat
from .ioutils import optional_read_exact, read_exact


class ChunkReader:
    """Forward-only reader for the chunk framing.

    ``open`` consumes the prologue; ``next_chunk`` then returns one chunk per
    call and ``None`` once the stream ends cleanly on a chunk boundary. Any
    short read inside a prefix or a body raises TruncatedStreamError and
    leaves the reader unusable.
    """

    def __init__(self, stream: BinaryIO, *, owns_stream: bool = False):
        self.stream = stream
        self.owns_stream = owns_stream
        self.position = 0  # bytes consumed after the prologue
        self.chunks_read = 0
        self._prologue: Optional[Tuple[int, int]] = None
        self._exhausted = False
        self._failed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.next_chunk()
            if chunk is None:
                return
            yield chunk

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def open(self, magic_len: int, header_len: int) -> Tuple[bytes, bytes]:
        """Read ``magic_len`` bytes of magic and ``header_len`` bytes of header.

        The magic is returned as read; comparing it against an expected value
        is up to the caller.
        """
        if self._prologue is not None:
            raise ProtocolError("magic and header already read")
        self._prologue = (magic_len, header_len)
        try:
            magic = read_exact(self.stream, magic_len, "magic")
            header = read_exact(self.stream, header_len, "header")
        except (TruncatedStreamError, OSError):
            self._failed = True
            raise
        return magic, header

    def next_chunk(self) -> Optional[bytes]:
        if self._prologue is None:
            raise ProtocolError("next_chunk called before open")
        if self._failed:
            raise ProtocolError("reader already failed; reopen the stream to read again")
        if self._exhausted:
            return None
        try:
            raw = optional_read_exact(self.stream, PREFIX_SIZE, f"length prefix at offset {self.position}")
            if raw is None:
                self._exhausted = True
                return None
            (length,) = LENGTH_PREFIX.unpack(raw)
            data = read_exact(self.stream, length, f"chunk body at offset {self.position + PREFIX_SIZE}")
        except (TruncatedStreamError, OSError):
            self._failed = True
            raise
        self.position += PREFIX_SIZE + length
        self.chunks_read += 1
        return data

    def iter_with_offsets(self) -> Iterator[Tuple[int, bytes]]:
        """Yield ``(offset, chunk)`` pairs, offsets relative to the end of the header."""
        while True:
            offset = self.position
            chunk = self.next_chunk()
            if chunk is None:
                return
            yield offset, chunk

    def restart(self) -> Tuple[bytes, bytes]:
        """Seek back to offset 0 and read the prologue again."""
        if self._prologue is None:
            raise ProtocolError("restart called before open")
        if not self.stream.seekable():
            raise ProtocolError("stream is not seekable; open a new handle to read again")
        magic_len, header_len = self._prologue
        self.stream.seek(0)
        self.position = 0
        self.chunks_read = 0
        self._prologue = None
        self._exhausted = False
        self._failed = False
        return self.open(magic_len, header_len)

    def close(self) -> None:
        if self.owns_stream and not self.stream.closed:
            self.stream.close()


def open_sized(path: str, fmt: SeqDataFormat, buffer_size: int = DEFAULT_BUFFER_SIZE) -> Tuple[BinaryIO, int]:
    """Open ``path`` for reading and return the handle with the file size.

    Files too small to hold the magic and header are rejected before any
    read happens.
    """
    f = open(path, "rb", buffering=buffer_size)
    try:
        total_len = os.fstat(f.fileno()).st_size
        if total_len < fmt.prologue_size:
            raise TruncatedStreamError(
                f"{path}: file holds {total_len} bytes, not enough for magic and header "
                f"({fmt.prologue_size} bytes)",
                expected=fmt.prologue_size,
                available=total_len,
            )
    except (SeqDataError, OSError):
        f.close()
        raise
    return f, total_len


class SeqDataReader:
    """File-backed reader bound to a SeqDataFormat.

    Unlike ChunkReader, the magic is checked against the format and the file
    size is checked up front.
    """

    def __init__(self, path: str, fmt: SeqDataFormat = NO_MAGIC_NO_HEADER, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.path = path
        self.fmt = fmt
        self.buffer_size = buffer_size
        self.header: Optional[bytes] = None
        self.data_len: int = 0  # size of the chunk region
        self._r: Optional[ChunkReader] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __iter__(self) -> Iterator[Tuple[int, bytes]]:
        if self._r is None:
            raise ProtocolError("reader not open")
        return self._r.iter_with_offsets()

    def open(self) -> bytes:
        if self._r is not None:
            return self.header
        f, total_len = open_sized(self.path, self.fmt, self.buffer_size)
        try:
            r = ChunkReader(f, owns_stream=True)
            magic, header = r.open(len(self.fmt.magic), self.fmt.header_size)
            self.fmt.check_magic(magic)
        except (SeqDataError, OSError):
            f.close()
            raise
        self._r = r
        self.header = header
        self.data_len = total_len - self.fmt.prologue_size
        return header

    def close(self) -> None:
        if self._r is not None:
            self._r.close()
            self._r = None

    @property
    def position(self) -> int:
        return self._r.position if self._r is not None else 0

    def next(self) -> Optional[Tuple[int, bytes]]:
        """Return the next chunk with its offset, or None at end of file."""
        if self._r is None:
            raise ProtocolError("reader not open")
        offset = self._r.position
        chunk = self._r.next_chunk()
        if chunk is None:
            return None
        return offset, chunk
