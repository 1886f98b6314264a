from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .constants import LENGTH_PREFIX, PREFIX_SIZE
from .errors import TruncatedStreamError
from .format import NO_MAGIC_NO_HEADER, SeqDataFormat
from .ioutils import read_exact, truncate_at


@dataclass
class ScanReport:
    chunk_count: int
    valid_end: int  # absolute offset just past the last complete chunk
    file_size: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def damaged_bytes(self) -> int:
        return self.file_size - self.valid_end


def scan_stream(f: BinaryIO, data_start: int) -> ScanReport:
    """Walk the length prefixes of a seekable stream, skipping over bodies.

    Stops at the first position where a prefix or a body runs past the end of
    the stream. The stream position is left unspecified.
    """
    file_size = f.seek(0, os.SEEK_END)
    if file_size < data_start:
        raise TruncatedStreamError(
            f"stream holds {file_size} bytes, shorter than magic and header ({data_start} bytes)",
            expected=data_start,
            available=file_size,
        )
    pos = data_start
    count = 0
    error: Optional[str] = None
    while pos < file_size:
        remaining = file_size - pos
        if remaining < PREFIX_SIZE:
            error = f"truncated length prefix ({remaining} stray byte(s))"
            break
        f.seek(pos)
        (length,) = LENGTH_PREFIX.unpack(read_exact(f, PREFIX_SIZE, "length prefix"))
        if remaining - PREFIX_SIZE < length:
            error = f"chunk declares {length} bytes but only {remaining - PREFIX_SIZE} remain"
            break
        pos += PREFIX_SIZE + length
        count += 1
    return ScanReport(chunk_count=count, valid_end=pos, file_size=file_size, error=error)


def scan(path: str, fmt: SeqDataFormat = NO_MAGIC_NO_HEADER) -> ScanReport:
    """Check that ``path`` ends exactly on a chunk boundary.

    Magic and header problems are raised, not reported: truncating cannot
    fix them.
    """
    with open(path, "rb") as f:
        fmt.check_magic(read_exact(f, len(fmt.magic), "magic"))
        read_exact(f, fmt.header_size, "header")
        return scan_stream(f, fmt.prologue_size)


def repair(path: str, fmt: SeqDataFormat = NO_MAGIC_NO_HEADER, output: Optional[str] = None) -> ScanReport:
    """Drop a damaged tail so the file ends after its last complete chunk.

    With ``output`` the source is left untouched and the repaired copy is
    written there instead. Returns the report of the scan done before repair.
    """
    report = scan(path, fmt)
    target = path
    if output is not None:
        shutil.copyfile(path, output)
        target = output
    if not report.ok:
        truncate_at(target, report.valid_end)
    return report
