"""
SeqData — a sequence of length-prefixed binary chunks in one file.

Layout: magic (format-defined, may be empty), header (fixed size, may be
empty), then any number of chunks, each a u32 little endian length followed
by that many bytes. There is no footer, count or separator, so files can be
written and read as streams.

- ChunkWriter / ChunkReader: the framing codec over any binary stream
- SeqDataWriter / SeqDataReader: file-backed helpers bound to a SeqDataFormat
- seqdata.aio: the codec over asyncio streams, and async file helpers
- seqdata.recover: find and drop a damaged tail
- seqdata.cli: the ``seqdata`` command line tool
"""

from .errors import (  # noqa: F401
    SeqDataError,
    TruncatedStreamError,
    ChunkTooLargeError,
    ProtocolError,
    HeaderSizeError,
    MagicMismatchError,
)
from .format import SeqDataFormat, NO_MAGIC_NO_HEADER  # noqa: F401
from .reader import ChunkReader, SeqDataReader  # noqa: F401
from .writer import ChunkWriter, SeqDataWriter  # noqa: F401

__version__ = "0.1"

__all__ = [
    "SeqDataError",
    "TruncatedStreamError",
    "ChunkTooLargeError",
    "ProtocolError",
    "HeaderSizeError",
    "MagicMismatchError",
    "SeqDataFormat",
    "NO_MAGIC_NO_HEADER",
    "ChunkReader",
    "ChunkWriter",
    "SeqDataReader",
    "SeqDataWriter",
]
