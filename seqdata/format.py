from __future__ import annotations

from dataclasses import dataclass

from .errors import HeaderSizeError, MagicMismatchError


@dataclass(frozen=True)
class SeqDataFormat:
    """Describes one flavour of SeqData file.

    ``magic`` may be empty. The header is opaque at this layer; only its size
    is fixed by the format.
    """

    magic: bytes = b""
    header_size: int = 0

    def __post_init__(self):
        if self.header_size < 0:
            raise ValueError("header_size must be non-negative")

    @property
    def prologue_size(self) -> int:
        return len(self.magic) + self.header_size

    def check_header(self, header: bytes) -> None:
        if len(header) != self.header_size:
            raise HeaderSizeError(
                f"header has invalid size, expecting {self.header_size} but got {len(header)}"
            )

    def check_magic(self, raw: bytes) -> None:
        if raw != self.magic:
            raise MagicMismatchError(f"magic {raw!r} does not match expected value {self.magic!r}")


NO_MAGIC_NO_HEADER = SeqDataFormat()
