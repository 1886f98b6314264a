from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from seqdata.constants import CHUNK_FILE_PATTERN
from seqdata.errors import SeqDataError, TruncatedStreamError
from seqdata.format import SeqDataFormat
from seqdata.reader import SeqDataReader
from seqdata.recover import repair, scan
from seqdata.writer import SeqDataWriter


def _hex_bytes(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a hex string: {value!r}")


def _read_input(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    return Path(path).read_bytes()


def cmd_pack(output: str, inputs: list[str], *, magic: bytes = b"", header: bytes = b"", quiet: bool = False) -> bool:
    """Create a new file holding one chunk per input.

    Args:
        output: Destination path; must not exist.
        inputs: Files to store, in order. ``-`` reads stdin as one chunk.
        magic: Magic bytes to write first.
        header: Header bytes written after the magic.
    """
    fmt = SeqDataFormat(magic=magic, header_size=len(header))
    with SeqDataWriter.create(output, header, fmt) as w:
        for p in inputs:
            data = _read_input(p)
            w.append(data)
            if not quiet:
                print(f"{len(data)}\t{p}")
    if not quiet:
        print(f"Wrote {len(inputs)} chunk(s) to {output}")
    return True


def cmd_append(archive: str, inputs: list[str], *, magic: bytes = b"", header_size: int = 0, quiet: bool = False) -> bool:
    fmt = SeqDataFormat(magic=magic, header_size=header_size)
    w, _header = SeqDataWriter.open(archive, fmt)
    with w:
        for p in inputs:
            data = _read_input(p)
            w.append(data)
            if not quiet:
                print(f"{len(data)}\t{p}")
    return True


def cmd_list(archive: str, *, magic: bytes = b"", header_size: int = 0) -> bool:
    """Print ``offset<TAB>length`` for every chunk.

    Offsets are relative to the first byte after the header.
    """
    fmt = SeqDataFormat(magic=magic, header_size=header_size)
    with SeqDataReader(archive, fmt) as r:
        for offset, data in r:
            print(f"{offset}\t{len(data)}")
    return True


def cmd_unpack(archive: str, *, outdir: str = ".", magic: bytes = b"", header_size: int = 0, quiet: bool = False) -> bool:
    fmt = SeqDataFormat(magic=magic, header_size=header_size)
    os.makedirs(outdir, exist_ok=True)
    count = 0
    with SeqDataReader(archive, fmt) as r:
        if header_size:
            Path(outdir, "header.bin").write_bytes(r.header)
        for idx, (_offset, data) in enumerate(r):
            name = CHUNK_FILE_PATTERN.format(idx)
            Path(outdir, name).write_bytes(data)
            count += 1
            if not quiet:
                print(f"{len(data)}\t{name}")
    if not quiet:
        print(f"Extracted {count} chunk(s) to {outdir}")
    return True


def cmd_verify(archive: str, *, magic: bytes = b"", header_size: int = 0) -> bool:
    """Check that the file ends on a chunk boundary.

    Prints:
        "OK" on success, "FAIL" when the tail is damaged.
    """
    report = scan(archive, SeqDataFormat(magic=magic, header_size=header_size))
    if report.ok:
        print(f"OK\t{report.chunk_count} chunk(s)")
        return True
    print("FAIL")
    print(
        f"{report.chunk_count} complete chunk(s), then {report.error} at offset {report.valid_end}.\n"
        "Hint: run 'seqdata repair' to drop the damaged tail.",
        file=sys.stderr,
    )
    return False


def cmd_repair(archive: str, *, output: Optional[str] = None, magic: bytes = b"", header_size: int = 0) -> bool:
    report = repair(archive, SeqDataFormat(magic=magic, header_size=header_size), output=output)
    target = output or archive
    if report.ok:
        print(f"OK: nothing to repair ({report.chunk_count} chunk(s))")
    else:
        print(f"Dropped {report.damaged_bytes} byte(s) from {target}; kept {report.chunk_count} chunk(s)")
    return True


def _add_format_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--magic", type=_hex_bytes, default=b"", help="Expected magic bytes as hex (default: none)")
    ap.add_argument("--header-size", type=int, default=0, help="Header size in bytes (default 0)")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="seqdata",
        description="SeqData length-prefixed chunk file tool",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Create a file with one chunk per input")
    ap_pack.add_argument("output", help="Output path")
    ap_pack.add_argument("inputs", nargs="+", help="Input files ('-' for stdin)")
    ap_pack.add_argument("--magic", type=_hex_bytes, default=b"", help="Magic bytes as hex")
    ap_pack.add_argument("--header", type=_hex_bytes, default=b"", help="Header bytes as hex")
    ap_pack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_append = sub.add_parser("append", help="Append one chunk per input to an existing file")
    ap_append.add_argument("archive", help="File path")
    ap_append.add_argument("inputs", nargs="+", help="Input files ('-' for stdin)")
    _add_format_args(ap_append)
    ap_append.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List chunk offsets and lengths")
    ap_list.add_argument("archive", help="File path")
    _add_format_args(ap_list)

    ap_unpack = sub.add_parser("unpack", help="Write every chunk to its own file")
    ap_unpack.add_argument("archive", help="File path")
    ap_unpack.add_argument("--outdir", default=".", help="Output directory")
    _add_format_args(ap_unpack)
    ap_unpack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_verify = sub.add_parser("verify", help="Check the file ends on a chunk boundary")
    ap_verify.add_argument("archive", help="File path")
    _add_format_args(ap_verify)

    ap_repair = sub.add_parser("repair", help="Truncate a damaged tail")
    ap_repair.add_argument("archive", help="File path")
    ap_repair.add_argument("--output", help="Write the repaired copy here; leave the input untouched")
    _add_format_args(ap_repair)

    args = ap.parse_args(argv)
    try:
        if args.cmd == "pack":
            cmd_pack(args.output, args.inputs, magic=args.magic, header=args.header, quiet=args.quiet)
        elif args.cmd == "append":
            cmd_append(args.archive, args.inputs, magic=args.magic, header_size=args.header_size, quiet=args.quiet)
        elif args.cmd == "list":
            cmd_list(args.archive, magic=args.magic, header_size=args.header_size)
        elif args.cmd == "unpack":
            cmd_unpack(args.archive, outdir=args.outdir, magic=args.magic, header_size=args.header_size, quiet=args.quiet)
        elif args.cmd == "verify":
            ok = cmd_verify(args.archive, magic=args.magic, header_size=args.header_size)
            sys.exit(0 if ok else 1)
        elif args.cmd == "repair":
            cmd_repair(args.archive, output=args.output, magic=args.magic, header_size=args.header_size)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except TruncatedStreamError as e:
        print(
            f"Error: {e}\n"
            "Hint: run 'seqdata verify' to locate the damage and 'seqdata repair' to drop the damaged tail.",
            file=sys.stderr,
        )
        sys.exit(2)
    except (SeqDataError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
