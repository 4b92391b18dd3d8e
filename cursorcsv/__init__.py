"""
cursorcsv: comma-separated text with a cursor-style reader and a buffered writer (stdlib-only).

Contract (v0):
- The first line is always the header; it defines column names and the column count.
- Columns are addressed by 1-based position or by exact (case-sensitive) name.
- Reading is advance-then-get, like a forward-only database result set:
    while r.next():
        name = r.get_string("name")
        age = r.get_integer(2)
        if r.was_null(): ...
- Tokenizing (one line -> list of fields):
    , separates fields; leading/trailing/consecutive commas give empty fields
    a field is quoted only if its FIRST character is "
    inside a quoted field "" is one literal quote and , is literal text
    a " anywhere else in an unquoted field is literal text
    a closing " followed by anything but " or , is an error
- Missing values: an empty field is "null":
    get_string -> "" (was_null() True)
    get_integer -> 0 (was_null() True, after trimming)
    get_date -> None (was_null() True, after trimming)
- Rows with fewer fields than the header raise; extra trailing fields are kept
  but cannot be addressed by name or position.
- Writing: None -> "", numbers unquoted, bool -> true/false, dates via the date
  format (default isoformat()). Text is quoted when it contains , or " or when
  quote_all_strings is set; embedded quotes are doubled.
- Errors: raise immediately with a CSVError subclass carrying line/column/value context.

API:
- parse(text) -> list of fields for one line
- reader(f, ...) / from_string(text) / open_reader(path) -> CSVReader
- writer(f, ...) / open_writer(path) -> CSVWriter

Python: 3.10+
"""

from __future__ import annotations

import io
import logging
import numbers
import os
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

SEPARATOR = ","
QUOTE = '"'
LINE_TERMINATOR = "\n"
BUFFER_SIZE = 65536

__version__ = "0.1.0"


# ----------------------------
# Exceptions
# ----------------------------

class CSVError(Exception):
    """Base class for every cursorcsv failure. Carries optional line/column/value context."""

    def __init__(
        self,
        reason: str,
        *,
        line: Optional[int] = None,
        column: Optional[Union[int, str]] = None,
        value: Optional[str] = None,
    ) -> None:
        context = []
        if line is not None:
            context.append(f"line={line}")
        if column is not None:
            context.append(f"column={column!r}")
        if value is not None:
            context.append(f"value={value!r}")
        msg = f"{type(self).__name__}({', '.join(context)}): {reason}"
        super().__init__(msg)
        self.reason = reason
        self.line = line        # 1-based line number in the source (header is 1)
        self.column = column    # 1-based position or column name
        self.value = value      # raw field text


class EmptySourceError(CSVError):
    """No header line was available."""


class MalformedFieldError(CSVError, ValueError):
    """A closing quote was followed by something other than a quote or a separator."""


class RowTooShortError(CSVError):
    """A data row has fewer fields than the header."""

    def __init__(self, expected: int, actual: int, *, line: Optional[int] = None) -> None:
        super().__init__(f"Expected {expected} columns, found only {actual}", line=line)
        self.expected = expected
        self.actual = actual


class InvalidColumnIndexError(CSVError, IndexError):
    pass


class UnknownColumnError(CSVError, LookupError):
    pass


class NoCurrentRowError(CSVError):
    """A getter was called before the first next(), after exhaustion, or after close()."""


class TypeCoercionError(CSVError, ValueError):
    pass


class ReadFailureError(CSVError):
    pass


class WriteFailureError(CSVError):
    pass


# ----------------------------
# Tokenizer
# ----------------------------

class TokenizerState(Enum):
    START = auto()        # at the start of a field
    IN_UNQUOTED = auto()
    IN_QUOTED = auto()
    QUOTE_SEEN = auto()   # just saw a quote inside a quoted field


def parse(text: str, *, line_number: Optional[int] = None) -> List[str]:
    """
    Split one line (without its terminator) into fields.

    "" yields [""]. A quoted field that is still open when the text ends is
    emitted with whatever was collected. `line_number` only feeds error context.
    """
    fields: List[str] = []
    buf: List[str] = []
    state = TokenizerState.START

    for pos, c in enumerate(text):
        if state is TokenizerState.START:
            if c == SEPARATOR:
                fields.append("")
            elif c == QUOTE:
                buf.clear()
                state = TokenizerState.IN_QUOTED
            else:
                buf.append(c)
                state = TokenizerState.IN_UNQUOTED

        elif state is TokenizerState.IN_UNQUOTED:
            if c == SEPARATOR:
                fields.append("".join(buf))
                buf.clear()
                state = TokenizerState.START
            else:
                buf.append(c)

        elif state is TokenizerState.IN_QUOTED:
            if c == QUOTE:
                state = TokenizerState.QUOTE_SEEN
            else:
                buf.append(c)

        else:
            if c == QUOTE:
                buf.append(QUOTE)
                state = TokenizerState.IN_QUOTED
            elif c == SEPARATOR:
                fields.append("".join(buf))
                buf.clear()
                state = TokenizerState.START
            else:
                raise MalformedFieldError(
                    f"Found {c!r} at position {pos} after a quote in a quoted string",
                    line=line_number, column=len(fields) + 1, value=text,
                )

    fields.append("".join(buf))
    return fields


# ----------------------------
# Date formats
# ----------------------------

@dataclass(frozen=True)
class DateFormat:
    """Parser/formatter pair used by get_date() and by the writer for date values."""

    parser: Callable[[str], datetime]
    formatter: Callable[[date], str]
    pattern: Optional[str] = None

    @classmethod
    def from_pattern(cls, pattern: str) -> "DateFormat":
        """Build a format from a strftime/strptime pattern such as "%Y-%m-%d"."""
        return cls(
            parser=lambda s: datetime.strptime(s, pattern),
            formatter=lambda d: d.strftime(pattern),
            pattern=pattern,
        )


ISO_DATE_FORMAT = DateFormat(
    parser=datetime.fromisoformat,
    formatter=lambda d: d.isoformat(),
)

DateFormatLike = Union[DateFormat, str]


def _as_date_format(fmt: Optional[DateFormatLike]) -> Optional[DateFormat]:
    if fmt is None or isinstance(fmt, DateFormat):
        return fmt
    if isinstance(fmt, str):
        return DateFormat.from_pattern(fmt)
    raise TypeError(f"Expected a DateFormat or a pattern string, got {type(fmt).__name__}")


# ----------------------------
# Reader
# ----------------------------

class CursorState(Enum):
    BEFORE_ROW = auto()   # no current row yet, or the last next() failed
    ON_ROW = auto()
    EXHAUSTED = auto()
    CLOSED = auto()


Column = Union[int, str]

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


class CSVReader:
    """
    Forward-only cursor over comma-separated lines.

    `source` is any iterable of text lines (an open text file, io.StringIO, a
    list of strings). The header line is read on construction. The reader owns
    the source from then on: close() closes it.
    """

    def __init__(self, source: Iterable[str], *, date_format: Optional[DateFormatLike] = None) -> None:
        if isinstance(source, (str, bytes)):
            raise TypeError("CSVReader needs an iterable of lines; use from_string() for in-memory text")

        self._source = source
        self._lines = iter(source)
        self._line_number = 0
        self._row: Optional[List[str]] = None
        self._state = CursorState.BEFORE_ROW
        self._was_null = False
        self._date_format = _as_date_format(date_format) or ISO_DATE_FORMAT

        header = self._read_line()
        if header is None:
            raise EmptySourceError("No records were found in the source")

        self._names = parse(header, line_number=self._line_number)
        self._index: Dict[str, int] = {}
        for position, name in enumerate(self._names, start=1):
            if name in self._index:
                logger.warning(
                    "Duplicate column name %r at positions %d and %d; name lookups use %d",
                    name, self._index[name], position, position,
                )
            self._index[name] = position
        self._column_count = len(self._names)
        logger.debug("Read header with %d columns: %r", self._column_count, self._names)

    # -- line source

    def _read_line(self) -> Optional[str]:
        try:
            line = next(self._lines, None)
        except (OSError, UnicodeDecodeError) as e:
            raise ReadFailureError(f"Could not read from the source: {e}", line=self._line_number + 1) from e
        if line is None:
            return None
        self._line_number += 1
        return line.rstrip("\r\n")

    # -- cursor

    def next(self) -> bool:
        """
        Advance to the next row. Returns False once the source is exhausted or
        the reader is closed. After a RowTooShortError or MalformedFieldError the
        offending line is consumed and next() may be called again.
        """
        if self._state in (CursorState.EXHAUSTED, CursorState.CLOSED):
            return False

        self._row = None
        self._state = CursorState.BEFORE_ROW

        line = self._read_line()
        if line is None:
            self._state = CursorState.EXHAUSTED
            logger.debug("Source exhausted after %d lines", self._line_number)
            return False

        fields = parse(line, line_number=self._line_number)
        if len(fields) < self._column_count:
            raise RowTooShortError(self._column_count, len(fields), line=self._line_number)
        if len(fields) > self._column_count:
            logger.debug(
                "Line %d has %d fields; %d beyond the header are not addressable",
                self._line_number, len(fields), len(fields) - self._column_count,
            )

        self._row = fields
        self._state = CursorState.ON_ROW
        return True

    def __iter__(self) -> Iterator[List[str]]:
        while self.next():
            yield self.row

    def __enter__(self) -> "CSVReader":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def line_number(self) -> int:
        """1-based line number of the last line read (the header is line 1)."""
        return self._line_number

    @property
    def row(self) -> List[str]:
        """All fields of the current row, including any beyond the header."""
        if self._row is None:
            raise NoCurrentRowError("There is no current row", line=self._line_number)
        return list(self._row)

    # -- columns

    @property
    def column_count(self) -> int:
        return self._column_count

    def get_column_count(self) -> int:
        return self._column_count

    def get_column_index(self, name: Optional[str]) -> int:
        if not name:
            raise UnknownColumnError("Column name cannot be empty", column=name)
        try:
            return self._index[name]
        except KeyError:
            raise UnknownColumnError(f"[{name}] is not a valid column name", column=name) from None

    def get_column_name(self, index: int) -> str:
        self._validate_column_index(index)
        return self._names[index - 1]

    def get_column_names(self) -> List[str]:
        return [self.get_column_name(i) for i in range(1, self._column_count + 1)]

    def _validate_column_index(self, index: int) -> None:
        if index < 1 or index > self._column_count:
            raise InvalidColumnIndexError(
                f"Invalid column index {index}. Must be between 1 and {self._column_count}",
                column=index,
            )

    def _resolve(self, column: Column) -> int:
        if isinstance(column, bool):
            raise TypeError("Column must be a 1-based position or a column name, not bool")
        if isinstance(column, int):
            self._validate_column_index(column)
            return column
        if column is None or isinstance(column, str):
            return self.get_column_index(column)
        raise TypeError(f"Column must be a 1-based position or a column name, got {type(column).__name__}")

    # -- typed getters

    def fetch(self, column: Column, kind: type = str) -> Tuple[Any, bool]:
        """
        Return (value, was_null) for `column` of the current row.

        kind=str   -> raw field, no trimming; null when the field is ""
        kind=int   -> trimmed base-10 integer; (0, True) when blank
        kind=date  -> trimmed, parsed with the date format; (None, True) when blank
        Does not touch was_null().
        """
        index = self._resolve(column)
        if self._row is None:
            raise NoCurrentRowError("There is no current row", line=self._line_number, column=column)
        raw = self._row[index - 1]

        if kind is str:
            return raw, raw == ""

        text = raw.strip()
        if kind is int:
            if not text:
                return 0, True
            if _INTEGER_RE.fullmatch(text) is None:
                raise TypeCoercionError(
                    f"Value of column {index} was [{raw}], not an integer",
                    line=self._line_number, column=index, value=raw,
                )
            return int(text), False

        if kind in (date, datetime):
            if not text:
                return None, True
            try:
                value = self._date_format.parser(text)
            except (ValueError, TypeError) as e:
                raise TypeCoercionError(
                    f"Value of column {index} was [{raw}], not a valid date",
                    line=self._line_number, column=index, value=raw,
                ) from e
            if not isinstance(value, date):
                raise TypeCoercionError(
                    f"Date format returned {type(value).__name__} for column {index}, not a date",
                    line=self._line_number, column=index, value=raw,
                )
            return value, False

        raise TypeError(f"Unsupported kind: {kind!r} (expected str, int or date)")

    def get_string(self, column: Column) -> str:
        value, self._was_null = self.fetch(column, str)
        return value

    def get_integer(self, column: Column) -> int:
        value, self._was_null = self.fetch(column, int)
        return value

    def get_date(self, column: Column) -> Optional[datetime]:
        value, self._was_null = self.fetch(column, date)
        return value

    def was_null(self) -> bool:
        """True if the most recent get_* call found an empty value."""
        return self._was_null

    # -- configuration

    @property
    def date_format(self) -> DateFormat:
        return self._date_format

    @date_format.setter
    def date_format(self, fmt: Optional[DateFormatLike]) -> None:
        self._date_format = _as_date_format(fmt) or ISO_DATE_FORMAT

    def get_date_format(self) -> DateFormat:
        return self._date_format

    def set_date_format(self, fmt: Optional[DateFormatLike]) -> None:
        self.date_format = fmt

    # -- lifecycle

    def close(self) -> None:
        if self._state is CursorState.CLOSED:
            return
        self._state = CursorState.CLOSED
        self._row = None
        close = getattr(self._source, "close", None)
        if close is not None:
            try:
                close()
            except OSError as e:
                raise ReadFailureError(f"Could not close the {type(self).__name__}: {e}") from e
        logger.debug("Closed reader after %d lines", self._line_number)


# ----------------------------
# Writer
# ----------------------------

class CSVWriter:
    """
    Buffered writer of comma-separated lines.

    `sink` needs a write(str) method; flush() and close() are called when
    present. Lines are collected and handed to the sink once more than
    BUFFER_SIZE characters are pending, on flush() and on close().
    """

    def __init__(
        self,
        sink: Any,
        *,
        quote_all_strings: bool = False,
        date_format: Optional[DateFormatLike] = None,
    ) -> None:
        self._sink = sink
        self._quote_all_strings = quote_all_strings
        self._date_format = _as_date_format(date_format)
        self._column_names: Optional[List[str]] = None
        self._rows_written = 0
        self._pending: List[str] = []
        self._pending_size = 0
        self._closed = False

    def __enter__(self) -> "CSVWriter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- rows

    def write(self, *values: Any) -> None:
        """
        Write one row. A single list or tuple argument is expanded in place;
        an empty row is ignored. Column names, if set, go out before the first row.
        """
        if len(values) == 1 and isinstance(values[0], (list, tuple)):
            values = tuple(values[0])
        if not values:
            return
        if self._closed:
            raise WriteFailureError(f"The {type(self).__name__} is closed")

        fields = [self.to_csv(v) for v in values]

        if self._rows_written == 0 and self._column_names is not None:
            logger.debug("Writing header: %r", self._column_names)
            self._emit(SEPARATOR.join(self._column_names))

        self._emit(SEPARATOR.join(fields))
        self._rows_written += 1
        if self._pending_size > BUFFER_SIZE:
            self._drain()

    def writerows(self, rows: Iterable[Sequence[Any]]) -> None:
        for r in rows:
            self.write(list(r))

    def to_csv(self, value: Any) -> str:
        """Convert one value to field text, quoting it when needed."""
        if value is None:
            return ""
        if isinstance(value, bool):
            text = "true" if value else "false"
        elif isinstance(value, numbers.Number):
            return str(value)
        elif isinstance(value, str):
            text = value
        elif isinstance(value, date):
            text = self._date_format.formatter(value) if self._date_format else value.isoformat()
        else:
            raise TypeError(
                f"Cannot write {type(value).__name__} values; expected str, number, bool, date or None"
            )

        if self._quote_all_strings or SEPARATOR in text or QUOTE in text:
            text = QUOTE + text.replace(QUOTE, QUOTE * 2) + QUOTE
        return text

    @property
    def rows_written(self) -> int:
        return self._rows_written

    # -- buffering

    def _emit(self, line: str) -> None:
        self._pending.append(line + LINE_TERMINATOR)
        self._pending_size += len(line) + len(LINE_TERMINATOR)

    def _drain(self) -> None:
        # pending lines are kept until the sink accepts them
        if not self._pending:
            return
        chunk = "".join(self._pending)
        try:
            self._sink.write(chunk)
        except (OSError, ValueError) as e:
            raise WriteFailureError(f"Could not write to the sink: {e}") from e
        self._pending.clear()
        self._pending_size = 0

    def flush(self) -> None:
        if self._closed:
            raise WriteFailureError(f"Could not flush the {type(self).__name__}: already closed")
        self._drain()
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            try:
                flush()
            except OSError as e:
                raise WriteFailureError(f"Could not flush the {type(self).__name__}: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        try:
            self.flush()
        finally:
            self._closed = True
            close = getattr(self._sink, "close", None)
            if close is not None:
                try:
                    close()
                except OSError as e:
                    raise WriteFailureError(f"Could not close the {type(self).__name__}: {e}") from e

    # -- configuration

    def set_column_names(self, names: Sequence[str]) -> None:
        """Set the header line. Ignored once names are set; only effective before the first write()."""
        if self._column_names is not None:
            logger.debug("Column names already set; ignoring %r", list(names))
            return
        self._column_names = list(names)

    def get_column_names(self) -> Optional[List[str]]:
        return None if self._column_names is None else list(self._column_names)

    @property
    def quote_all_strings(self) -> bool:
        return self._quote_all_strings

    @quote_all_strings.setter
    def quote_all_strings(self, value: bool) -> None:
        self._quote_all_strings = bool(value)

    def is_quote_all_strings(self) -> bool:
        return self._quote_all_strings

    def set_quote_all_strings(self, value: bool) -> None:
        self.quote_all_strings = value

    @property
    def date_format(self) -> Optional[DateFormat]:
        return self._date_format

    @date_format.setter
    def date_format(self, fmt: Optional[DateFormatLike]) -> None:
        self._date_format = _as_date_format(fmt)

    def get_date_format(self) -> Optional[DateFormat]:
        return self._date_format

    def set_date_format(self, fmt: Optional[DateFormatLike]) -> None:
        self.date_format = fmt


# ----------------------------
# Convenience constructors
# ----------------------------

PathLike = Union[str, os.PathLike]


def _is_binary(f: Any) -> bool:
    return isinstance(f, (io.RawIOBase, io.BufferedIOBase))


def reader(
    f: Any,
    *,
    date_format: Optional[DateFormatLike] = None,
    encoding: str = "utf-8",
) -> CSVReader:
    """
    Cursor over a text stream, a binary stream (decoded with `encoding`) or any
    iterable of lines. A binary stream is handed back untouched if the header
    cannot be read.
    """
    if not _is_binary(f):
        return CSVReader(f, date_format=date_format)
    wrapper = io.TextIOWrapper(f, encoding=encoding, newline="")
    try:
        return CSVReader(wrapper, date_format=date_format)
    except BaseException:
        wrapper.detach()
        raise


def from_string(text: str, *, date_format: Optional[DateFormatLike] = None) -> CSVReader:
    return CSVReader(io.StringIO(text, newline=""), date_format=date_format)


def open_reader(
    path: PathLike,
    *,
    encoding: str = "utf-8",
    date_format: Optional[DateFormatLike] = None,
) -> CSVReader:
    """Open `path` for reading. The file is closed again if the header cannot be read."""
    try:
        f = open(path, "r", encoding=encoding, newline="")
    except OSError as e:
        raise ReadFailureError(f"Could not open {os.fspath(path)!r}: {e}") from e
    try:
        return CSVReader(f, date_format=date_format)
    except BaseException:
        f.close()
        raise


def writer(
    f: Any,
    *,
    quote_all_strings: bool = False,
    date_format: Optional[DateFormatLike] = None,
    encoding: str = "utf-8",
) -> CSVWriter:
    """Writer over a text stream or a binary stream (encoded with `encoding`)."""
    if _is_binary(f):
        f = io.TextIOWrapper(f, encoding=encoding, newline="")
    return CSVWriter(f, quote_all_strings=quote_all_strings, date_format=date_format)


def open_writer(
    path: PathLike,
    *,
    encoding: str = "utf-8",
    quote_all_strings: bool = False,
    date_format: Optional[DateFormatLike] = None,
) -> CSVWriter:
    try:
        f = open(path, "w", encoding=encoding, newline="")
    except OSError as e:
        raise WriteFailureError(f"Could not open {os.fspath(path)!r}: {e}") from e
    return CSVWriter(f, quote_all_strings=quote_all_strings, date_format=date_format)


__all__ = [
    "BUFFER_SIZE",
    "CSVError",
    "CSVReader",
    "CSVWriter",
    "CursorState",
    "DateFormat",
    "EmptySourceError",
    "ISO_DATE_FORMAT",
    "InvalidColumnIndexError",
    "MalformedFieldError",
    "NoCurrentRowError",
    "ReadFailureError",
    "RowTooShortError",
    "TokenizerState",
    "TypeCoercionError",
    "UnknownColumnError",
    "WriteFailureError",
    "__version__",
    "from_string",
    "open_reader",
    "open_writer",
    "parse",
    "reader",
    "writer",
]
