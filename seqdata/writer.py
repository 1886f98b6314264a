from __future__ import annotations

import os
from typing import BinaryIO, Tuple

from .constants import LENGTH_PREFIX, MAX_CHUNK_LEN
from .errors import ChunkTooLargeError, ProtocolError, SeqDataError, TruncatedStreamError
from .format import NO_MAGIC_NO_HEADER, SeqDataFormat
from .ioutils import byte_view, read_exact, write_all
from .recover import scan_stream


def open_for_append(path: str, fmt: SeqDataFormat, *, check_tail: bool = True) -> Tuple[BinaryIO, bytes]:
    """Open ``path`` read/write, validate its prologue and seek to the end.

    Returns the open handle and the header. The handle is closed again if
    any check fails.
    """
    f = open(path, "r+b")
    try:
        fmt.check_magic(read_exact(f, len(fmt.magic), "magic"))
        header = read_exact(f, fmt.header_size, "header")
        if check_tail:
            report = scan_stream(f, fmt.prologue_size)
            if not report.ok:
                raise TruncatedStreamError(
                    f"{path}: damaged tail at offset {report.valid_end} ({report.error}); "
                    "run 'seqdata repair' before appending",
                    expected=report.file_size,
                    available=report.valid_end,
                )
        f.seek(0, os.SEEK_END)
    except (SeqDataError, OSError):
        f.close()
        raise
    return f, header


class ChunkWriter:
    """Append-only writer for the chunk framing.

    The prologue (magic then header) is written once by ``open``; every
    ``write_chunk`` then emits a 4-byte little endian length followed by the
    raw bytes. Nothing already written is ever revisited.
    """

    def __init__(self, stream: BinaryIO, *, owns_stream: bool = False):
        self.stream = stream
        self.owns_stream = owns_stream
        self.chunks_written = 0
        self.bytes_written = 0
        self._opened = False
        self._failed = False
        self._closed = False

    @classmethod
    def resume(cls, stream: BinaryIO, *, owns_stream: bool = False) -> "ChunkWriter":
        """Writer for a stream already positioned after an existing prologue."""
        w = cls(stream, owns_stream=owns_stream)
        w._opened = True
        return w

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def failed(self) -> bool:
        return self._failed

    def _check_usable(self) -> None:
        if self._closed:
            raise ProtocolError("writer is closed")
        if self._failed:
            raise ProtocolError("writer already failed; stream must be treated as corrupt")

    def open(self, magic: bytes, header: bytes) -> None:
        self._check_usable()
        if self._opened:
            raise ProtocolError("magic and header already written")
        self._opened = True
        try:
            write_all(self.stream, magic)
            write_all(self.stream, header)
        except OSError:
            self._failed = True
            raise

    def write_chunk(self, data: bytes) -> None:
        """Write one chunk. ``data`` may be any bytes-like object.

        The length is counted in bytes, and is checked before anything
        reaches the stream, so a rejected chunk leaves no partial prefix.
        """
        self._check_usable()
        if not self._opened:
            raise ProtocolError("write_chunk called before open")
        with byte_view(data) as view:
            n = view.nbytes
            if n > MAX_CHUNK_LEN:
                raise ChunkTooLargeError(f"chunk of {n} bytes does not fit the 32-bit length prefix")
            try:
                write_all(self.stream, LENGTH_PREFIX.pack(n))
                write_all(self.stream, view)
            except OSError:
                self._failed = True
                raise
        self.chunks_written += 1
        self.bytes_written += LENGTH_PREFIX.size + n

    def flush(self) -> None:
        if not self._closed:
            self.stream.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if not self.stream.closed:
                self.stream.flush()
        finally:
            if self.owns_stream:
                self.stream.close()


class SeqDataWriter:
    """File-backed writer bound to a SeqDataFormat."""

    def __init__(self, path: str, fmt: SeqDataFormat, chunk_writer: ChunkWriter):
        self.path = path
        self.fmt = fmt
        self._w = chunk_writer

    @classmethod
    def create(cls, path: str, header: bytes = b"", fmt: SeqDataFormat = NO_MAGIC_NO_HEADER) -> "SeqDataWriter":
        """Create a new file at ``path``; fails if it already exists."""
        fmt.check_header(header)
        f = open(path, "xb")
        w = ChunkWriter(f, owns_stream=True)
        try:
            w.open(fmt.magic, header)
        except OSError:
            w.close()
            raise
        return cls(str(path), fmt, w)

    @classmethod
    def open(
        cls,
        path: str,
        fmt: SeqDataFormat = NO_MAGIC_NO_HEADER,
        *,
        check_tail: bool = True,
    ) -> Tuple["SeqDataWriter", bytes]:
        """Open an existing file for appending.

        Returns the writer and the header found in the file. With
        ``check_tail`` the chunk region is scanned first so that new chunks
        are never appended after a damaged one.
        """
        f, header = open_for_append(path, fmt, check_tail=check_tail)
        return cls(str(path), fmt, ChunkWriter.resume(f, owns_stream=True)), header

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def chunks_written(self) -> int:
        return self._w.chunks_written

    def append(self, data: bytes) -> None:
        self._w.write_chunk(data)

    def flush(self) -> None:
        self._w.flush()

    def close(self) -> None:
        self._w.close()
