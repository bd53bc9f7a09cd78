"""
Line ending measurement and conversion.

Both operations work on binary streams one line at a time, so the content
between terminators is never decoded or altered. Only CRLF and LF are
recognized; a lone CR is ordinary content.
"""

import enum
import logging
from typing import BinaryIO, Iterator, Optional

logger = logging.getLogger("crlf.line_endings")

CR: bytes = b"\r"
LF: bytes = b"\n"
CRLF: bytes = CR + LF


class LineEndingIOError(OSError):
    """Raised when reading from or writing to a stream fails."""


class LineEnding(enum.Enum):
    """The two supported line ending conventions."""

    CRLF = "crlf"
    LF = "lf"

    def __str__(self) -> str:
        return self.value

    @property
    def terminator(self) -> bytes:
        return CRLF if self is LineEnding.CRLF else LF


class LineStatistics:
    """Counts of lines ending in LF and CRLF for one stream."""

    def __init__(self, lf_count: int = 0, crlf_count: int = 0) -> None:
        self.lf_count = lf_count
        self.crlf_count = crlf_count

    def __repr__(self) -> str:
        return f"LineStatistics(lf_count={self.lf_count}, crlf_count={self.crlf_count})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LineStatistics):
            return NotImplemented
        return (self.lf_count, self.crlf_count) == (other.lf_count, other.crlf_count)

    @property
    def total(self) -> int:
        return self.lf_count + self.crlf_count

    @property
    def is_mixed(self) -> bool:
        return self.lf_count > 0 and self.crlf_count > 0

    def classify(self) -> Optional[LineEnding]:
        """
        Return the single convention used by every counted line.

        Returns None when both kinds were seen or when nothing was counted.
        """
        if self.lf_count == 0 and self.crlf_count > 0:
            return LineEnding.CRLF
        if self.crlf_count == 0 and self.lf_count > 0:
            return LineEnding.LF
        return None


def _read_lines(source: BinaryIO) -> Iterator[bytes]:
    """Yield chunks up to and including each LF; the last one may lack it."""
    while True:
        try:
            chunk: bytes = source.readline()
        except OSError as e:
            raise LineEndingIOError(f"Failed to read from stream: {e}") from e
        if not chunk:
            return
        yield chunk


def measure(source: BinaryIO) -> LineStatistics:
    """
    Count the lines of a stream by terminator.

    A chunk ending in CR LF counts as crlf, anything else as lf. That
    includes a trailing fragment without any LF, so b"a\\r\\nb\\nc" gives
    one crlf line and two lf lines.
    """
    stats = LineStatistics()
    for chunk in _read_lines(source):
        if chunk.endswith(CRLF):
            stats.crlf_count += 1
        else:
            stats.lf_count += 1
    return stats


def _write(dest: BinaryIO, data: bytes) -> None:
    """Write all of data, repeating after short writes from raw sinks."""
    try:
        written = dest.write(data)
        # Buffered sinks accept everything; raw ones report what they took
        while isinstance(written, int) and written < len(data):
            if written <= 0:
                raise LineEndingIOError("Stream accepted no bytes")
            data = data[written:]
            written = dest.write(data)
    except LineEndingIOError:
        raise
    except OSError as e:
        raise LineEndingIOError(f"Failed to write to stream: {e}") from e


def convert_to(source: BinaryIO, dest: BinaryIO, ending: LineEnding) -> None:
    """
    Copy source to dest, replacing every line terminator with ending.

    LF and CR LF terminators are both rewritten. A final line without a
    terminator is copied as is, so no newline is added at end of file.
    dest is flushed before returning.
    """
    terminator: bytes = ending.terminator
    line_count: int = 0

    for chunk in _read_lines(source):
        has_terminator: bool = chunk.endswith(LF)
        if has_terminator:
            chunk = chunk[:-1]
            if chunk.endswith(CR):
                chunk = chunk[:-1]

        _write(dest, chunk)
        if has_terminator:
            _write(dest, terminator)
            line_count += 1

    try:
        dest.flush()
    except OSError as e:
        raise LineEndingIOError(f"Failed to flush stream: {e}") from e

    logger.debug("Rewrote %d line terminators to %s", line_count, ending)
