#!/usr/bin/env python3
"""
sfarctool - Star Force archive tool

	x <archive> <outdir>           unpack every subfile to outdir as <archive>_<index>.bin
	p <indir> <archive>            pack files named "XXX.ext" or "name_XXX.ext" (XXX = subfile number)
	d <file> <offset> <outfile>    decompress one LZ77/LZ11 stream found at offset in file

Subfiles are extracted exactly as stored, so compressed subfiles stay compressed.
When packing, files that decode as LZ77/LZ11 are flagged compressed in the header.
"""
from typing import Dict, List, Optional
import argparse
import logging
import os
import re
import sys

from . import archive, lz77
from .errors import SFArcError

log = logging.getLogger(__name__)

INDEX_PATTERN = re.compile(r"[0-9]+")


def parse_offset(s: str) -> int:
    try:
        return int(s, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid offset: {s}")


def ensure_file_readable(path: str):
    if not os.path.isfile(path):
        raise SFArcError(f"Input file not found: '{path}'")
    if not os.access(path, os.R_OK):
        raise SFArcError(f"Input file not readable: '{path}'")


def subfile_index(file_name: str) -> Optional[int]:
    """Index encoded in "XXX.ext" / "name_XXX.ext", or None if there is none."""
    stem = file_name.split(".", 1)[0]
    number = stem.rsplit("_", 1)[-1]
    if not INDEX_PATTERN.fullmatch(number):
        return None
    return int(number)


def subfile_name(archive_path: str, index: int, count: int) -> str:
    digits = len(str(max(count - 1, 0)))
    base = os.path.splitext(os.path.basename(archive_path))[0]
    return f"{base}_{index:0{digits}d}.bin"


def collect_files(directory: str) -> Dict[int, bytes]:
    files = {}
    for name in sorted(os.listdir(directory)):
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        index = subfile_index(name)
        if index is None:
            log.debug("skipping '%s': no subfile number", name)
            continue
        if index in files:
            log.warning("'%s' replaces an earlier file for subfile %d", name, index)
        with open(path, "rb") as f:
            files[index] = f.read()
    return files


# ---------------------------
# Commands
# ---------------------------
def extract_archive(archive_path: str, out_dir: str) -> List[str]:
    ensure_file_readable(archive_path)
    subfiles = archive.read_archive(archive_path)

    os.makedirs(out_dir, exist_ok=True)
    written = []
    for index, data in enumerate(subfiles):
        out_path = os.path.join(out_dir, subfile_name(archive_path, index, len(subfiles)))
        # never overwrite existing files
        with open(out_path, "xb") as fo:
            fo.write(data)
        written.append(out_path)
    print(f"Extracted {len(subfiles)} subfiles from archive {os.path.basename(archive_path)}.")
    return written


def pack_archive(in_dir: str, archive_path: str) -> int:
    if not os.path.isdir(in_dir):
        raise SFArcError(f"Input directory not found: '{in_dir}'")
    files = collect_files(in_dir)
    count = archive.write_archive(archive_path, files)
    print(f"Created archive {os.path.basename(archive_path)} with {count} subfiles.")
    return count


def decompress_from_file(in_filename: str, offset: int, out_filename: str) -> None:
    ensure_file_readable(in_filename)
    if offset < 0:
        raise SFArcError("Offset must be non-negative")
    with open(in_filename, "rb") as f:
        size = f.seek(0, os.SEEK_END)
        if offset >= size:
            raise SFArcError(f"Offset 0x{offset:x} beyond end of file (size 0x{size:x})")
        f.seek(offset)
        out = lz77.decompress_stream(f)
        consumed = f.tell() - offset

    with open(out_filename, "wb") as fo:
        fo.write(bytes(out))
    print(f"Decompressed 0x{consumed:x} bytes -> 0x{len(out):x} bytes in file '{out_filename}'")


# ---------------------------
# CLI
# ---------------------------
def main(argv=None):
    parser = argparse.ArgumentParser(description="Star Force archive tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="print debug information")
    sub = parser.add_subparsers(dest="cmd", required=True)

    px = sub.add_parser("x", help="extract: x <archive> <output_dir>")
    px.add_argument("archive")
    px.add_argument("output_dir")

    pp = sub.add_parser("p", help="pack: p <input_dir> <archive>")
    pp.add_argument("input_dir")
    pp.add_argument("archive")

    pd = sub.add_parser("d", help="decompress: d <input_file> <offset> <output_file>")
    pd.add_argument("input_file")
    pd.add_argument("offset", type=parse_offset)
    pd.add_argument("output_file")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s: %(message)s")

    try:
        if args.cmd == "x":
            extract_archive(args.archive, args.output_dir)
        elif args.cmd == "p":
            pack_archive(args.input_dir, args.archive)
        elif args.cmd == "d":
            decompress_from_file(args.input_file, args.offset, args.output_file)
    except SFArcError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
