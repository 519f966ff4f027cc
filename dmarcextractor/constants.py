"""Sets global version values and extraction defaults"""

__version__ = "1.0.0"

MAGIC_ZIP = b"\x50\x4b\x03\x04"
MAGIC_ZIP_EMPTY = b"\x50\x4b\x05\x06"
MAGIC_GZIP = b"\x1f\x8b"

# 50 MiB
DEFAULT_MAX_DECOMPRESSED_SIZE = 50 * 1024 * 1024

# Read size for streaming decompression
CHUNK_SIZE = 64 * 1024

REPORT_CONTENT_TYPES = (
    "application/zip",
    "application/x-zip",
    "application/x-zip-compressed",
    "application/gzip",
    "application/x-gzip",
    "application/xml",
    "text/xml",
)

REPORT_FILE_EXTENSIONS = (
    ".zip",
    ".gz",
    ".gzip",
    ".xml",
)

GENERIC_CONTENT_TYPE = "application/octet-stream"
