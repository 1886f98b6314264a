"""asyncio flavour of the chunk codec.

Same framing and the same error rules as ChunkReader/ChunkWriter, over
``asyncio.StreamReader`` and ``asyncio.StreamWriter`` (sockets, pipes,
subprocess streams), plus file-level AsyncSeqDataReader/AsyncSeqDataWriter
that run blocking file I/O in the loop's default executor.
"""

from __future__ import annotations

import asyncio
import functools
from typing import AsyncIterator, BinaryIO, Optional, Tuple

from .constants import DEFAULT_BUFFER_SIZE, LENGTH_PREFIX, MAX_CHUNK_LEN, PREFIX_SIZE
from .errors import ChunkTooLargeError, ProtocolError, SeqDataError, TruncatedStreamError
from .format import NO_MAGIC_NO_HEADER, SeqDataFormat
from .ioutils import byte_view, read_upto, write_all
from .reader import open_sized
from .writer import open_for_append


def _truncated(what: str, exc: asyncio.IncompleteReadError) -> TruncatedStreamError:
    got = len(exc.partial)
    return TruncatedStreamError(
        f"Unexpected EOF reading {what}: expected {exc.expected} bytes, got {got}",
        expected=exc.expected,
        available=got,
    )


async def _run(func, *args):
    return await asyncio.get_running_loop().run_in_executor(None, func, *args)


class AsyncChunkReader:
    """Chunk reader over anything with an awaitable ``readexactly``."""

    def __init__(self, reader: asyncio.StreamReader):
        self.reader = reader
        self.position = 0
        self.chunks_read = 0
        self._opened = False
        self._exhausted = False
        self._failed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.next_chunk()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    async def _read_exact(self, n: int, what: str) -> bytes:
        try:
            return await self.reader.readexactly(n)
        except asyncio.IncompleteReadError as exc:
            raise _truncated(what, exc) from exc

    async def open(self, magic_len: int, header_len: int) -> Tuple[bytes, bytes]:
        if self._opened:
            raise ProtocolError("magic and header already read")
        self._opened = True
        try:
            magic = await self._read_exact(magic_len, "magic")
            header = await self._read_exact(header_len, "header")
        except (TruncatedStreamError, OSError):
            self._failed = True
            raise
        return magic, header

    async def next_chunk(self) -> Optional[bytes]:
        if not self._opened:
            raise ProtocolError("next_chunk called before open")
        if self._failed:
            raise ProtocolError("reader already failed")
        if self._exhausted:
            return None
        try:
            try:
                raw = await self.reader.readexactly(PREFIX_SIZE)
            except asyncio.IncompleteReadError as exc:
                if not exc.partial:
                    self._exhausted = True
                    return None
                raise _truncated(f"length prefix at offset {self.position}", exc) from exc
            (length,) = LENGTH_PREFIX.unpack(raw)
            data = await self._read_exact(length, f"chunk body at offset {self.position + PREFIX_SIZE}")
        except (TruncatedStreamError, OSError):
            self._failed = True
            raise
        self.position += PREFIX_SIZE + length
        self.chunks_read += 1
        return data


class AsyncChunkWriter:
    """Chunk writer over anything shaped like ``asyncio.StreamWriter``."""

    def __init__(self, writer: asyncio.StreamWriter, *, owns_stream: bool = False):
        self.writer = writer
        self.owns_stream = owns_stream
        self.chunks_written = 0
        self.bytes_written = 0
        self._opened = False
        self._failed = False
        self._closed = False

    @classmethod
    def resume(cls, writer: asyncio.StreamWriter, *, owns_stream: bool = False) -> "AsyncChunkWriter":
        """Writer for a stream already positioned after an existing prologue."""
        w = cls(writer, owns_stream=owns_stream)
        w._opened = True
        return w

    @property
    def failed(self) -> bool:
        return self._failed

    def _check_usable(self) -> None:
        if self._closed:
            raise ProtocolError("writer is closed")
        if self._failed:
            raise ProtocolError("writer already failed; stream must be treated as corrupt")

    async def open(self, magic: bytes, header: bytes) -> None:
        self._check_usable()
        if self._opened:
            raise ProtocolError("magic and header already written")
        self._opened = True
        try:
            self.writer.write(magic)
            self.writer.write(header)
            await self.writer.drain()
        except OSError:
            self._failed = True
            raise

    async def write_chunk(self, data: bytes) -> None:
        self._check_usable()
        if not self._opened:
            raise ProtocolError("write_chunk called before open")
        with byte_view(data) as view:
            n = view.nbytes
            if n > MAX_CHUNK_LEN:
                raise ChunkTooLargeError(f"chunk of {n} bytes does not fit the 32-bit length prefix")
            # transports may keep a reference to the buffer until it is sent
            body = data if isinstance(data, bytes) else view.tobytes()
        try:
            self.writer.write(LENGTH_PREFIX.pack(n))
            self.writer.write(body)
            await self.writer.drain()
        except OSError:
            self._failed = True
            raise
        self.chunks_written += 1
        self.bytes_written += PREFIX_SIZE + n

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.owns_stream:
            self.writer.close()
            await self.writer.wait_closed()
        elif not self._failed:
            await self.writer.drain()


class _FileSource:
    """``readexactly`` over a blocking binary file."""

    def __init__(self, f: BinaryIO):
        self.f = f

    async def readexactly(self, n: int) -> bytes:
        data = await _run(read_upto, self.f, n)
        if len(data) < n:
            raise asyncio.IncompleteReadError(data, n)
        return data

    def close(self) -> None:
        self.f.close()


class _FileSink:
    """StreamWriter-shaped wrapper around a blocking binary file.

    ``write`` only queues; ``drain`` hands the queued bytes to the executor.
    """

    def __init__(self, f: BinaryIO):
        self.f = f
        self._pending = bytearray()
        self._closing = False

    def write(self, data: bytes) -> None:
        if self._closing:
            raise ProtocolError("file sink is closing")
        self._pending += data

    async def drain(self) -> None:
        if not self._pending:
            return
        data, self._pending = bytes(self._pending), bytearray()
        await _run(write_all, self.f, data)

    def close(self) -> None:
        self._closing = True

    def is_closing(self) -> bool:
        return self._closing

    async def wait_closed(self) -> None:
        try:
            await self.drain()
            await _run(self.f.flush)
        finally:
            await _run(self.f.close)


class AsyncSeqDataWriter:
    """File-backed async writer bound to a SeqDataFormat."""

    def __init__(self, path: str, fmt: SeqDataFormat, chunk_writer: AsyncChunkWriter):
        self.path = path
        self.fmt = fmt
        self._w = chunk_writer

    @classmethod
    async def create(
        cls, path: str, header: bytes = b"", fmt: SeqDataFormat = NO_MAGIC_NO_HEADER
    ) -> "AsyncSeqDataWriter":
        """Create a new file at ``path``; fails if it already exists."""
        fmt.check_header(header)
        f = await _run(open, path, "xb")
        w = AsyncChunkWriter(_FileSink(f), owns_stream=True)
        try:
            await w.open(fmt.magic, header)
        except OSError:
            await w.close()
            raise
        return cls(str(path), fmt, w)

    @classmethod
    async def open(
        cls,
        path: str,
        fmt: SeqDataFormat = NO_MAGIC_NO_HEADER,
        *,
        check_tail: bool = True,
    ) -> Tuple["AsyncSeqDataWriter", bytes]:
        """Open an existing file for appending; returns the writer and the header."""
        f, header = await _run(functools.partial(open_for_append, path, fmt, check_tail=check_tail))
        w = AsyncChunkWriter.resume(_FileSink(f), owns_stream=True)
        return cls(str(path), fmt, w), header

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def chunks_written(self) -> int:
        return self._w.chunks_written

    async def append(self, data: bytes) -> None:
        await self._w.write_chunk(data)

    async def close(self) -> None:
        await self._w.close()


class AsyncSeqDataReader:
    """File-backed async reader; same checks as SeqDataReader."""

    def __init__(self, path: str, fmt: SeqDataFormat = NO_MAGIC_NO_HEADER, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.path = path
        self.fmt = fmt
        self.buffer_size = buffer_size
        self.header: Optional[bytes] = None
        self.data_len: int = 0
        self._source: Optional[_FileSource] = None
        self._r: Optional[AsyncChunkReader] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def __aiter__(self) -> AsyncIterator[Tuple[int, bytes]]:
        if self._r is None:
            raise ProtocolError("reader not open")
        return self._iter_with_offsets()

    async def _iter_with_offsets(self) -> AsyncIterator[Tuple[int, bytes]]:
        while True:
            item = await self.next()
            if item is None:
                return
            yield item

    async def open(self) -> bytes:
        if self._r is not None:
            return self.header
        f, total_len = await _run(open_sized, self.path, self.fmt, self.buffer_size)
        source = _FileSource(f)
        r = AsyncChunkReader(source)
        try:
            magic, header = await r.open(len(self.fmt.magic), self.fmt.header_size)
            self.fmt.check_magic(magic)
        except (SeqDataError, OSError):
            source.close()
            raise
        self._source = source
        self._r = r
        self.header = header
        self.data_len = total_len - self.fmt.prologue_size
        return header

    async def close(self) -> None:
        if self._source is not None:
            await _run(self._source.close)
            self._source = None
            self._r = None

    @property
    def position(self) -> int:
        return self._r.position if self._r is not None else 0

    async def next(self) -> Optional[Tuple[int, bytes]]:
        """Return the next chunk with its offset, or None at end of file."""
        if self._r is None:
            raise ProtocolError("reader not open")
        offset = self._r.position
        chunk = await self._r.next_chunk()
        if chunk is None:
            return None
        return offset, chunk
