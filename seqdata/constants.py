import struct


# Length prefix: u32 little endian, independent of host byte order
LENGTH_PREFIX = struct.Struct("<I")
PREFIX_SIZE = LENGTH_PREFIX.size  # 4
MAX_CHUNK_LEN = 0xFFFF_FFFF

# File-level reader buffering
DEFAULT_BUFFER_SIZE = 1024 * 1024  # 1 MiB

CHUNK_FILE_PATTERN = "chunk_{:06d}.bin"

# Upper bound for a single read() call while collecting a chunk body
READ_BLOCK_SIZE = 1024 * 1024
