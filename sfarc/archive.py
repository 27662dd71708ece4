"""
archive.py
Star Force subfile archive reader/writer.

The file starts with a table of 8-byte little-endian records:
	- u32 offset
	- u32 size, bit 31 set when the subfile is compressed (size is then the decompressed size)
There is no count field. The table ends where the smallest referenced offset begins.
The last record may be a terminator (offset = file length, size = 0xFFFF).

Subfile bodies follow at their offsets, each padded to a multiple of 4 bytes.
Compressed subfiles don't store their on-disk length; it is found by decoding them.
"""
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Mapping, Tuple
import logging
import os
import struct

from . import lz77
from .errors import ArchiveError, LZ77Error

log = logging.getLogger(__name__)

RECORD = struct.Struct("<II")
RECORD_SIZE = RECORD.size
ALIGNMENT = 4
COMPRESSED_FLAG = 0x80000000
SIZE_MASK = 0x7FFFFFFF
TERMINATOR_SIZE = 0xFFFF
MAX_SUBFILE_SIZE = 0x7FFFFFFF
MAX_OFFSET = 0xFFFFFFFF


@dataclass
class SubfileEntry:
    offset: int = 0
    size: int = 0
    compressed: bool = False
    data: bytes = b""

    @classmethod
    def from_record(cls, offset: int, size_field: int) -> "SubfileEntry":
        return cls(offset=offset, size=size_field & SIZE_MASK, compressed=(size_field & COMPRESSED_FLAG) != 0)

    @property
    def size_field(self) -> int:
        return self.size | (COMPRESSED_FLAG if self.compressed else 0)

    @property
    def is_gap(self) -> bool:
        return not self.data and not self.compressed and self.size == 0


def align_up(n: int, to: int) -> int:
    return (n + to - 1) // to * to


def _stream_length(stream: BinaryIO) -> int:
    pos = stream.tell()
    length = stream.seek(0, os.SEEK_END)
    stream.seek(pos)
    return length


# ---------------------------
# Reading
# ---------------------------
def is_terminator(entry: SubfileEntry, file_length: int) -> bool:
    return entry.offset == file_length and entry.size == TERMINATOR_SIZE and not entry.compressed


def parse_header(stream: BinaryIO) -> List[SubfileEntry]:
    """Read the record table from the start of stream. Entries have no data yet."""
    file_length = _stream_length(stream)
    header_end = file_length
    entries = []

    stream.seek(0)
    while stream.tell() < header_end:
        record = stream.read(RECORD_SIZE)
        if len(record) < RECORD_SIZE:
            raise ArchiveError("Invalid archive file header: truncated record.")
        offset, size_field = RECORD.unpack(record)
        entry = SubfileEntry.from_record(offset, size_field)
        log.debug("record %d: offset 0x%x size 0x%x%s", len(entries), entry.offset, entry.size,
                  " (compressed)" if entry.compressed else "")
        entries.append(entry)
        header_end = min(header_end, offset)

    if stream.tell() != header_end:
        raise ArchiveError(
            f"Invalid archive file header: table ends at 0x{stream.tell():x}, first subfile at 0x{header_end:x}.")

    if entries and is_terminator(entries[-1], file_length):
        log.debug("dropping terminator record")
        entries.pop()
    return entries


def subfile_length(stream: BinaryIO, index: int, entry: SubfileEntry) -> int:
    """On-disk length of a subfile. Compressed subfiles are decoded to measure it."""
    if not entry.compressed:
        return entry.size

    if entry.size > lz77.MAX_DECOMPRESSED_SIZE:
        raise ArchiveError(f"Could not read subfile {index}: invalid size.")
    stream.seek(entry.offset)
    try:
        out = lz77.decompress_stream(stream)
    except LZ77Error as e:
        raise ArchiveError(f"Could not read subfile {index}: invalid LZ77 compressed data ({e}).") from e
    if len(out) != entry.size:
        raise ArchiveError(
            f"Could not read subfile {index}: decompressed size 0x{len(out):x} does not match 0x{entry.size:x}.")
    return stream.tell() - entry.offset


def extract(stream: BinaryIO, entries: List[SubfileEntry]) -> List[bytes]:
    """
    Read the raw bytes of every entry as they are stored on disk.
    Compressed subfiles come out still compressed. Each entry's data is filled in too.
    """
    result = []
    for index, entry in enumerate(entries):
        length = subfile_length(stream, index, entry)
        if length < 0 or length > MAX_SUBFILE_SIZE:
            raise ArchiveError(f"Could not read subfile {index}: invalid size.")

        stream.seek(entry.offset)
        data = stream.read(length)
        if len(data) != length:
            raise ArchiveError(
                f"Could not read subfile {index}: need 0x{length:x} bytes at 0x{entry.offset:x} but only 0x{len(data):x} available.")
        entry.data = data
        result.append(data)
    return result


def read_archive(path: str) -> List[bytes]:
    with open(path, "rb") as f:
        entries = parse_header(f)
        return extract(f, entries)


# ---------------------------
# Writing
# ---------------------------
def classify(data: bytes) -> SubfileEntry:
    """
    Decide whether data is already compressed by trying to decode it.
    Compressed data is stored as-is with its decompressed size in the header.
    """
    size = lz77.probe(data)
    if size is None:
        return SubfileEntry(size=len(data), compressed=False, data=bytes(data))
    return SubfileEntry(size=size, compressed=True, data=bytes(data))


def layout(entries: List[SubfileEntry]) -> Tuple[List[Tuple[int, int]], int]:
    """
    Assign offsets to entries. Returns the header records (terminator included)
    and the final file length.
    """
    # one extra slot for the terminator
    cursor = (len(entries) + 1) * RECORD_SIZE
    records = []
    for index, entry in enumerate(entries):
        entry.offset = cursor
        records.append((cursor, entry.size_field))
        if entry.is_gap:
            continue

        cursor = align_up(cursor + len(entry.data), ALIGNMENT)
        if cursor > MAX_OFFSET:
            raise ArchiveError(f"Maximum file size for archive exceeded at subfile {index}.")
        log.debug("subfile %d at 0x%x, next at 0x%x", index, entry.offset, cursor)

    records.append((cursor, TERMINATOR_SIZE))
    return records, cursor


def serialize(entries: List[SubfileEntry], records: List[Tuple[int, int]], end: int) -> bytes:
    out = bytearray()
    for offset, size_field in records:
        out += RECORD.pack(offset, size_field)
    for entry in entries:
        if entry.is_gap:
            continue
        if len(out) < entry.offset:
            out += bytes(entry.offset - len(out))
        out += entry.data
    if len(out) < end:
        out += bytes(end - len(out))
    return bytes(out)


def build(files: Mapping[int, bytes]) -> bytes:
    """Build an archive from a sparse index -> file bytes mapping."""
    if any(index < 0 for index in files):
        raise ArchiveError("Subfile indices must be non-negative.")

    count = max(files) + 1 if files else 0
    entries = [SubfileEntry() for _ in range(count)]
    for index in sorted(files):
        entry = classify(files[index])
        if entry.size > MAX_SUBFILE_SIZE or len(entry.data) > MAX_SUBFILE_SIZE:
            what = "Uncompressed size" if entry.compressed else "Size"
            raise ArchiveError(f"{what} of subfile {index} exceeds {MAX_SUBFILE_SIZE} bytes.")
        log.debug("subfile %d: %s, size 0x%x", index, "compressed" if entry.compressed else "raw", entry.size)
        entries[index] = entry

    records, end = layout(entries)
    return serialize(entries, records, end)


def write_archive(path: str, files: Dict[int, bytes]) -> int:
    """Write an archive to path, creating its directory. Returns the entry count."""
    data = build(files)
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return max(files) + 1 if files else 0
