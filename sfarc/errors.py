class SFArcError(Exception):
    pass


class LZ77Error(SFArcError):
    """Raised when a compressed stream cannot be decoded."""


class ArchiveError(SFArcError):
    """Raised when an archive header or subfile is malformed or too large."""
