"""
sfarc - reader/writer for the subfile archives used by Mega Man Star Force,
and the LZ77 (0x10) / LZ11 (0x11) decoder needed to size compressed subfiles.
"""
from .errors import SFArcError, LZ77Error, ArchiveError
from .lz77 import decompress_stream, decompress_bytes, probe
from .archive import SubfileEntry, parse_header, extract, classify, layout, build, read_archive, write_archive

__version__ = "1.0.0"
