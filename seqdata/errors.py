class SeqDataError(Exception):
    """Base class for SeqData-specific errors."""


# Stream content
class TruncatedStreamError(SeqDataError, EOFError):
    """Fewer bytes were available than the format requires at this position."""

    def __init__(self, message: str, expected: int = 0, available: int = 0):
        super().__init__(message)
        self.expected = expected
        self.available = available


class ChunkTooLargeError(SeqDataError, ValueError):
    pass


# Usage
class ProtocolError(SeqDataError, RuntimeError):
    pass


# Format description
class HeaderSizeError(SeqDataError, ValueError):
    pass


class MagicMismatchError(SeqDataError, ValueError):
    pass
