from __future__ import annotations

import array
import asyncio
import io
import os
import socket
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from seqdata.aio import AsyncChunkReader, AsyncChunkWriter, AsyncSeqDataReader, AsyncSeqDataWriter
from seqdata.errors import (
    ChunkTooLargeError,
    HeaderSizeError,
    MagicMismatchError,
    ProtocolError,
    TruncatedStreamError,
)
from seqdata.format import NO_MAGIC_NO_HEADER, SeqDataFormat
from seqdata.ioutils import truncate_at
from seqdata.reader import ChunkReader, SeqDataReader
from seqdata.writer import ChunkWriter, SeqDataWriter


H2 = SeqDataFormat(magic=b"\xde\xad\xbe\xef", header_size=10)

DATA1 = bytes([1, 2, 3, 4, 5, 6, 7])
DATA2 = bytes([125, 33, 6, 35, 6, 235, 46, 43, 25, 37])
DATA3 = bytes([10, 20, 30, 40, 50, 60, 70, 80, 90] * 3)


class _Sink:
    """Minimal stand-in for asyncio.StreamWriter."""

    def __init__(self, fail: bool = False):
        self.buf = bytearray()
        self.fail = fail
        self.closed = False
        self.drains = 0

    def write(self, data):
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.buf += data

    async def drain(self):
        self.drains += 1

    def close(self):
        self.closed = True

    async def wait_closed(self):
        return None


def _stream_of(raw: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(raw)
    reader.feed_eof()
    return reader


def _sync_encode(magic: bytes, header: bytes, chunks) -> bytes:
    buf = io.BytesIO()
    w = ChunkWriter(buf)
    w.open(magic, header)
    for c in chunks:
        w.write_chunk(c)
    return buf.getvalue()


class AsyncCodecTests(unittest.IsolatedAsyncioTestCase):
    async def test_writer_matches_sync_layout(self):
        chunks = [b"a", b"", b"bcd"]
        sink = _Sink()
        w = AsyncChunkWriter(sink)
        await w.open(b"SEQD", b"\x01\x02")
        for c in chunks:
            await w.write_chunk(c)
        await w.close()
        self.assertEqual(bytes(sink.buf), _sync_encode(b"SEQD", b"\x01\x02", chunks))
        self.assertFalse(sink.closed)
        self.assertEqual(w.chunks_written, 3)

    async def test_reader_reads_sync_output(self):
        chunks = [b"a", b"", b"bcd", bytes(70000)]
        r = AsyncChunkReader(_stream_of(_sync_encode(b"M", b"", chunks)))
        self.assertEqual(await r.open(1, 0), (b"M", b""))
        got = [c async for c in r]
        self.assertEqual(got, chunks)
        self.assertIsNone(await r.next_chunk())
        self.assertTrue(r.exhausted)

    async def test_sync_reader_reads_async_output(self):
        sink = _Sink()
        w = AsyncChunkWriter(sink, owns_stream=True)
        await w.open(b"\x00" * 4, b"")
        await w.write_chunk(b"hi")
        await w.close()
        self.assertTrue(sink.closed)
        self.assertEqual(bytes(sink.buf), bytes.fromhex("00000000020000006869"))
        r = ChunkReader(io.BytesIO(bytes(sink.buf)))
        r.open(4, 0)
        self.assertEqual(list(r), [b"hi"])

    async def test_stray_prefix_bytes(self):
        good = _sync_encode(b"", b"", [b"x"])
        for stray in (1, 2, 3):
            with self.subTest(stray=stray):
                r = AsyncChunkReader(_stream_of(good + b"\x00" * stray))
                await r.open(0, 0)
                self.assertEqual(await r.next_chunk(), b"x")
                with self.assertRaises(TruncatedStreamError) as ctx:
                    await r.next_chunk()
                self.assertEqual(ctx.exception.available, stray)
                with self.assertRaises(ProtocolError):
                    await r.next_chunk()

    async def test_truncated_body(self):
        raw = _sync_encode(b"", b"", [b"abcdef"])[:-1]
        r = AsyncChunkReader(_stream_of(raw))
        await r.open(0, 0)
        with self.assertRaises(TruncatedStreamError):
            await r.next_chunk()

    async def test_truncated_header(self):
        r = AsyncChunkReader(_stream_of(b"SEQD\x01"))
        with self.assertRaises(TruncatedStreamError):
            await r.open(4, 4)

    async def test_protocol_order(self):
        w = AsyncChunkWriter(_Sink())
        with self.assertRaises(ProtocolError):
            await w.write_chunk(b"x")
        r = AsyncChunkReader(_stream_of(b""))
        with self.assertRaises(ProtocolError):
            await r.next_chunk()

    async def test_oversized_writes_nothing(self):
        sink = _Sink()
        w = AsyncChunkWriter(sink)
        await w.open(b"", b"")
        with mock.patch("seqdata.aio.MAX_CHUNK_LEN", 3):
            with self.assertRaises(ChunkTooLargeError):
                await w.write_chunk(b"abcd")
        self.assertEqual(bytes(sink.buf), b"")
        self.assertFalse(w.failed)

    async def test_length_counts_bytes_not_items(self):
        items = array.array("I", [1, 2])
        sink = _Sink()
        w = AsyncChunkWriter(sink)
        await w.open(b"", b"")
        await w.write_chunk(items)
        self.assertEqual(bytes(sink.buf), b"\x08\x00\x00\x00" + items.tobytes())
        self.assertEqual(w.bytes_written, 12)

    async def test_non_buffer_chunk_writes_nothing(self):
        sink = _Sink()
        w = AsyncChunkWriter(sink)
        await w.open(b"M", b"")
        with self.assertRaises(TypeError):
            await w.write_chunk("hi")
        self.assertEqual(bytes(sink.buf), b"M")
        await w.write_chunk(b"ok")
        self.assertEqual(bytes(sink.buf), b"M\x02\x00\x00\x00ok")

    async def test_io_error_poisons_writer(self):
        sink = _Sink()
        w = AsyncChunkWriter(sink)
        await w.open(b"", b"")
        sink.fail = True
        with self.assertRaises(ConnectionResetError):
            await w.write_chunk(b"x")
        with self.assertRaises(ProtocolError):
            await w.write_chunk(b"y")

    async def test_roundtrip_over_socket(self):
        left, right = socket.socketpair()
        _, send = await asyncio.open_connection(sock=left)
        recv, recv_writer = await asyncio.open_connection(sock=right)
        chunks = [b"first", b"", os.urandom(200_000), array.array("H", [1, 2, 3])]

        async def produce():
            w = AsyncChunkWriter(send, owns_stream=True)
            await w.open(b"SQ", b"\x01")
            for c in chunks:
                await w.write_chunk(c)
            await w.close()

        producer = asyncio.ensure_future(produce())
        try:
            r = AsyncChunkReader(recv)
            self.assertEqual(await r.open(2, 1), (b"SQ", b"\x01"))
            got = [c async for c in r]
            await producer
        finally:
            recv_writer.close()
            await recv_writer.wait_closed()
        self.assertEqual(got, [chunks[0], chunks[1], chunks[2], chunks[3].tobytes()])
        self.assertEqual(r.position, sum(4 + len(bytes(c)) for c in chunks))

    async def test_peer_closing_mid_chunk(self):
        left, right = socket.socketpair()
        _, send = await asyncio.open_connection(sock=left)
        recv, recv_writer = await asyncio.open_connection(sock=right)
        send.write(_sync_encode(b"", b"", [b"whole", b"cut short"])[:-3])
        await send.drain()
        send.close()
        await send.wait_closed()
        try:
            r = AsyncChunkReader(recv)
            await r.open(0, 0)
            self.assertEqual(await r.next_chunk(), b"whole")
            with self.assertRaises(TruncatedStreamError) as ctx:
                await r.next_chunk()
            self.assertEqual(ctx.exception.expected, 9)
            self.assertEqual(ctx.exception.available, 6)
        finally:
            recv_writer.close()
            await recv_writer.wait_closed()


class AsyncFileTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp_path = Path(tmp.name)

    async def _write_sample(self, path: Path, fmt: SeqDataFormat) -> bytes:
        header = b"\x90" * fmt.header_size
        async with await AsyncSeqDataWriter.create(str(path), header, fmt) as w:
            await w.append(DATA1)
            await w.append(DATA2)
            await w.append(DATA3)
            self.assertEqual(w.chunks_written, 3)
        return header

    async def test_writer_reader_both_formats(self):
        for name, fmt in (("plain", NO_MAGIC_NO_HEADER), ("h2", H2)):
            with self.subTest(fmt=name):
                p = self.tmp_path / f"{name}.sdf"
                header = await self._write_sample(p, fmt)

                with SeqDataReader(str(p), fmt) as sync_r:
                    expected = list(sync_r)

                async with AsyncSeqDataReader(str(p), fmt) as r:
                    self.assertEqual(r.header, header)
                    self.assertEqual(r.data_len, p.stat().st_size - fmt.prologue_size)
                    got = [item async for item in r]
                    self.assertEqual(r.position, r.data_len)
                self.assertEqual(got, expected)
                self.assertEqual([c for _, c in got], [DATA1, DATA2, DATA3])

    async def test_next_and_position(self):
        p = self.tmp_path / "a.sdf"
        await self._write_sample(p, H2)
        r = AsyncSeqDataReader(str(p), H2)
        self.assertEqual(await r.open(), b"\x90" * 10)
        self.assertEqual(await r.next(), (0, DATA1))
        self.assertEqual(r.position, 4 + len(DATA1))
        self.assertEqual(await r.next(), (11, DATA2))
        self.assertEqual(await r.next(), (25, DATA3))
        self.assertIsNone(await r.next())
        self.assertIsNone(await r.next())
        await r.close()

    async def test_open_for_append(self):
        p = self.tmp_path / "a.sdf"
        with SeqDataWriter.create(str(p), b"\x90" * 10, H2) as w:
            w.append(DATA1)
        w, header = await AsyncSeqDataWriter.open(str(p), H2)
        self.assertEqual(header, b"\x90" * 10)
        async with w:
            await w.append(b"")
            await w.append(bytearray(b"more"))
        with SeqDataReader(str(p), H2) as r:
            self.assertEqual([c for _, c in r], [DATA1, b"", b"more"])

    async def test_create_refuses_existing_file(self):
        p = self.tmp_path / "a.sdf"
        await self._write_sample(p, H2)
        before = p.read_bytes()
        with self.assertRaises(FileExistsError):
            await AsyncSeqDataWriter.create(str(p), b"\x00" * 10, H2)
        self.assertEqual(p.read_bytes(), before)

    async def test_create_checks_header_size(self):
        p = self.tmp_path / "a.sdf"
        with self.assertRaises(HeaderSizeError):
            await AsyncSeqDataWriter.create(str(p), b"\x00" * 3, H2)
        self.assertFalse(p.exists())

    async def test_magic_mismatch(self):
        p = self.tmp_path / "a.sdf"
        await self._write_sample(p, H2)
        other = SeqDataFormat(magic=b"\xca\xfe\xba\xbe", header_size=10)
        with self.assertRaises(MagicMismatchError):
            await AsyncSeqDataReader(str(p), other).open()
        with self.assertRaises(MagicMismatchError):
            await AsyncSeqDataWriter.open(str(p), other)

    async def test_append_refuses_damaged_tail(self):
        p = self.tmp_path / "a.sdf"
        await self._write_sample(p, H2)
        truncate_at(str(p), p.stat().st_size - 1)
        with self.assertRaises(TruncatedStreamError):
            await AsyncSeqDataWriter.open(str(p), H2)
        w, _ = await AsyncSeqDataWriter.open(str(p), H2, check_tail=False)
        await w.close()

    async def test_file_shorter_than_prologue(self):
        p = self.tmp_path / "a.sdf"
        p.write_bytes(b"\xde\xad\xbe\xef\x90")
        with self.assertRaises(TruncatedStreamError):
            await AsyncSeqDataReader(str(p), H2).open()

    async def test_truncated_tail_raises_after_good_chunks(self):
        p = self.tmp_path / "a.sdf"
        await self._write_sample(p, H2)
        truncate_at(str(p), p.stat().st_size - 5)
        async with AsyncSeqDataReader(str(p), H2) as r:
            self.assertEqual(await r.next(), (0, DATA1))
            self.assertEqual(await r.next(), (11, DATA2))
            with self.assertRaises(TruncatedStreamError):
                await r.next()
            with self.assertRaises(ProtocolError):
                await r.next()

    async def test_next_requires_open(self):
        r = AsyncSeqDataReader(str(self.tmp_path / "never.sdf"))
        with self.assertRaises(ProtocolError):
            await r.next()
        with self.assertRaises(ProtocolError):
            r.__aiter__()


if __name__ == "__main__":
    unittest.main()
