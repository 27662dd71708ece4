"""
lz77.py
Decoder for the LZ77-family compression found inside Star Force archive subfiles.

Header: 1 tag byte, then 3-byte little-endian decompressed size.
	- 0x10: LZ77, every back-reference is 2 bytes
	- 0x11: LZ11, back-references are 2, 3 or 4 bytes depending on the top nibble

Body is made of flag groups. A flag byte, scanned from the most significant bit,
governs up to 8 units:
	- 0: copy next byte in stream to output
	- 1: read a back-reference (count, displacement) and copy count bytes starting
	     displacement bytes behind the current output position

Copies are done one byte at a time so a displacement shorter than the count
repeats the bytes written earlier by the same copy.
"""
from io import BytesIO
from typing import BinaryIO, Optional, Tuple
import logging

from .errors import LZ77Error

log = logging.getLogger(__name__)

TAG_LZ77 = 0x10
TAG_LZ11 = 0x11
HEADER_SIZE = 4
MAX_DECOMPRESSED_SIZE = 0xFFFFFF


def _read_byte(stream: BinaryIO, what: str) -> int:
    b = stream.read(1)
    if not b:
        raise LZ77Error(f"Unexpected EOF while reading {what}")
    return b[0]


def _read_block(stream: BinaryIO, what: str) -> int:
    """Read a 16-bit value, high byte first."""
    b = stream.read(2)
    if len(b) < 2:
        raise LZ77Error(f"Unexpected EOF while reading {what}")
    return (b[0] << 8) | b[1]


def read_header(stream: BinaryIO) -> Tuple[int, int]:
    """Return (tag, decompressed size) of the stream at its current position."""
    header = stream.read(HEADER_SIZE)
    if len(header) < HEADER_SIZE:
        raise LZ77Error("Compressed data too small (no header)")
    tag = header[0]
    if tag != TAG_LZ77 and tag != TAG_LZ11:
        raise LZ77Error(f"Unknown compression type 0x{tag:02x}")
    size = header[1] | (header[2] << 8) | (header[3] << 16)
    return tag, size


def read_reference(stream: BinaryIO, tag: int) -> Tuple[int, int]:
    """Decode one back-reference unit, returning (count, displacement)."""
    block = _read_block(stream, "copy token")
    top = block >> 12

    if tag == TAG_LZ11 and top == 1:
        block2 = _read_block(stream, "copy token")
        # count [273..65808]
        count = (((block & 0xFFF) << 4) | (block2 >> 12)) + 273
        disp = (block2 & 0xFFF) + 1
    elif tag == TAG_LZ11 and top == 0:
        block2 = _read_byte(stream, "copy token")
        # count [17..272]
        count = (block >> 4) + 17
        disp = (((block & 0xF) << 8) | block2) + 1
    elif tag == TAG_LZ11:
        # count [3..16], top is at least 2 here
        count = top + 1
        disp = (block & 0xFFF) + 1
    else:
        # count [3..18]
        count = top + 3
        disp = (block & 0xFFF) + 1
    return count, disp


# ---------------------------
# Decompression
# ---------------------------
def decompress_stream(stream: BinaryIO) -> bytearray:
    """
    Decompress one LZ77/LZ11 stream starting at the current position of stream.

    On success the stream is left just past the last byte of compressed data and the
    result is exactly the declared size. On failure the stream position is undefined.
    """
    tag, size = read_header(stream)
    if size > MAX_DECOMPRESSED_SIZE:
        raise LZ77Error(f"Declared size 0x{size:x} too large")

    out = bytearray()
    while len(out) < size:
        flag_byte = _read_byte(stream, "flag byte")
        flag_mask = 0x80

        # bits left over once the size is reached are ignored
        while flag_mask and len(out) < size:
            if (flag_byte & flag_mask) == 0:
                out.append(_read_byte(stream, "literal"))
            else:
                count, disp = read_reference(stream, tag)
                if disp > len(out):
                    raise LZ77Error(
                        f"Displacement {disp} reaches before start of output (0x{len(out):x} bytes written)")
                if len(out) + count > size:
                    raise LZ77Error(
                        f"Copy of {count} bytes at 0x{len(out):x} overruns declared size 0x{size:x}")
                copy_pos = len(out) - disp
                for _ in range(count):
                    out.append(out[copy_pos])
                    copy_pos += 1
            flag_mask >>= 1

    return out


def decompress_bytes(data: bytes, offset: int = 0) -> Tuple[bytearray, int]:
    """Decompress the stream at offset in data. Returns (output, bytes consumed)."""
    stream = BytesIO(data)
    stream.seek(offset)
    out = decompress_stream(stream)
    return out, stream.tell() - offset


def probe(data: bytes) -> Optional[int]:
    """Return the decompressed size if data is a valid compressed stream, else None."""
    try:
        out, consumed = decompress_bytes(data)
    except LZ77Error as e:
        log.debug("not compressed: %s", e)
        return None
    log.debug("compressed stream: 0x%x -> 0x%x bytes", consumed, len(out))
    return len(out)
