"""
Streaming CSV decoder.

Reads one delimited record at a time from a RecordSource and pairs it with
the header row. The whole file is never materialized: at any moment the
decoder holds the header and the physical line(s) of a single record.
"""

import csv
import io
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from collections import deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from core.exceptions import EmptySource
from ingestion.source import RecordSource

logger = logging.getLogger(__name__)

Record = Dict[str, str]

# A record whose quotes never balance is cut off at this size
MAX_RECORD_BYTES = 1024 * 1024


@dataclass(frozen=True)
class DecoderProgress:
    """Position of the decoder within its source"""
    lines_read: int
    bytes_read: int
    size_hint: int
    records_read: int

    @property
    def percent(self) -> Optional[float]:
        if self.size_hint <= 0:
            return None
        return round(min(100.0, self.bytes_read / self.size_hint * 100), 1)

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            "lines_read": self.lines_read,
            "bytes_read": self.bytes_read,
            "size_hint": self.size_hint,
            "records_read": self.records_read,
            "percent": self.percent,
        }


def _inside_quotes(text: str, in_quotes: bool = False) -> bool:
    """
    Whether ``text`` ends inside a quoted field.

    Follows the csv module's default dialect: a quote opens a quoted field
    only as the first character of the field. A quote anywhere else in an
    unquoted field (``TV 55" screen``) is an ordinary character.
    """
    field_start = not in_quotes
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if in_quotes:
            if char == '"':
                if index + 1 < length and text[index + 1] == '"':
                    index += 1
                else:
                    in_quotes = False
            field_start = False
        elif char == '"' and field_start:
            in_quotes = True
            field_start = False
        else:
            field_start = char in ",\r\n"
        index += 1
    return in_quotes


def _parse_rows(text: str) -> List[List[str]]:
    """Every row the csv parser finds in ``text``, fields trimmed"""
    return [
        [field.strip() for field in row]
        for row in csv.reader(io.StringIO(text, newline=""))
        if row
    ]


class StreamingDecoder:
    """
    Decode CSV records one at a time.

    Format:
    - Comma separated, double-quote escaped, embedded newlines allowed
    - Header row mandatory, UTF-8 (a leading BOM is dropped)
    - Fields are trimmed and zipped against the header by position;
      missing trailing fields become "" and surplus fields are dropped
    - Blank lines between records are skipped

    Usage:
        async with StreamingDecoder(RecordSource(path)) as decoder:
            header = await decoder.read_header()
            while (record := await decoder.read_row()) is not None:
                ...
    """

    def __init__(self, source: RecordSource, size_hint: int = 0):
        self.source = source
        self.size_hint = size_hint
        self.header: Optional[List[str]] = None
        self.line_number = 0

        self._stack: Optional[AsyncExitStack] = None
        self._lines: Optional[AsyncIterator[bytes]] = None
        self._lines_read = 0
        self._bytes_read = 0
        self._records_read = 0
        self._exhausted = False
        self._pending: Deque[Tuple[int, List[str]]] = deque()

    async def __aenter__(self) -> "StreamingDecoder":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        """Open the underlying source; raises SourceUnavailable on failure"""
        if self._stack is not None:
            return
        stack = AsyncExitStack()
        try:
            self._lines = await stack.enter_async_context(self.source.open())
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack

        if not self.size_hint:
            self.size_hint = await self.source.size_hint()

        logger.debug(f"Opened CSV stream {self.source.descriptor} ({self.size_hint} bytes)")

    async def close(self):
        """Release the source handle. Safe to call more than once."""
        if self._stack is not None:
            stack, self._stack = self._stack, None
            self._lines = None
            await stack.aclose()

    async def _next_line(self) -> Optional[bytes]:
        if self._exhausted or self._lines is None:
            return None
        try:
            line = await self._lines.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            return None
        self._lines_read += 1
        self._bytes_read += len(line)
        return line

    async def _next_record(self) -> Optional[List[str]]:
        """
        Read the physical line(s) of the next non-blank record.

        Further lines are joined only while the record ends inside a quoted
        field. Should the parser still find more than one row in the joined
        text, the extra rows are queued and returned by the following calls.
        """
        if self._pending:
            self.line_number, fields = self._pending.popleft()
            return fields

        while True:
            raw = await self._next_line()
            if raw is None:
                return None

            encoding = "utf-8-sig" if self._lines_read == 1 else "utf-8"
            text = raw.decode(encoding, errors="replace")
            if not text.strip():
                continue

            start_line = self._lines_read
            size = len(raw)
            in_quotes = _inside_quotes(text)
            while in_quotes and size < MAX_RECORD_BYTES:
                more = await self._next_line()
                if more is None:
                    break
                size += len(more)
                chunk = more.decode("utf-8", errors="replace")
                text += chunk
                in_quotes = _inside_quotes(chunk, in_quotes=True)

            if in_quotes:
                logger.warning(
                    f"Line {start_line}: quoted field is never closed",
                    extra={"context": {"bytes": size}}
                )

            rows = _parse_rows(text)
            if not rows:
                continue

            self.line_number = start_line
            self._pending.extend((start_line, fields) for fields in rows[1:])
            return rows[0]

    async def read_header(self) -> List[str]:
        """
        Read the header row. Must be called exactly once, before read_row.

        Raises:
            EmptySource: If the source has no header row
        """
        if self.header is not None:
            raise RuntimeError("Header has already been read")
        if self._stack is None:
            raise RuntimeError("Decoder is not open")

        fields = await self._next_record()
        if not fields or not any(fields):
            raise EmptySource(
                "CSV has no valid header row",
                context={"source": self.source.descriptor}
            )

        self.header = fields
        logger.debug(f"CSV header: {len(fields)} columns")
        return list(fields)

    async def read_row(self) -> Optional[Record]:
        """
        Decode the next record.

        Returns None once the stream is exhausted; running out of data is
        normal termination, not an error.
        """
        if self.header is None:
            raise RuntimeError("read_header() must be called before read_row()")

        fields = await self._next_record()
        if fields is None:
            return None

        self._records_read += 1
        return {
            name: fields[index] if index < len(fields) else ""
            for index, name in enumerate(self.header)
        }

    def progress(self) -> DecoderProgress:
        return DecoderProgress(
            lines_read=self._lines_read,
            bytes_read=self._bytes_read,
            size_hint=self.size_hint,
            records_read=self._records_read,
        )
