from __future__ import annotations

import logging
import re
from enum import IntEnum
from typing import TYPE_CHECKING, cast

from .exceptions import MalformedPartHeader, MultipartParseError, ParseError, TruncatedBodyError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from typing import Any, Literal, TypeAlias, TypedDict

    class ScannerCallbacks(TypedDict, total=False):
        on_part_begin: Callable[[], None]
        on_part: Callable[[RawPart], None]
        on_end: Callable[[], None]

    CallbackName: TypeAlias = Literal["part_begin", "part", "end"]


class ScannerState(IntEnum):
    """States of the multipart scanner.

    The scanner moves forward one line at a time: it skips everything up to
    the first delimiter line, reads the three lines that make up a part's
    header block, then collects payload bytes until the next delimiter.
    """

    SEEK_BOUNDARY = 0
    READ_HEADER = 1
    READ_INFO = 2
    READ_FIELD_LINE = 3
    READ_BODY = 4
    AWAIT_NEXT_BOUNDARY = 5


# Get constants.  Iterating over a bytes object gives you integers, so we
# save the byte values we compare against.
CR = b"\r"[0]
LF = b"\n"[0]
CRLF = b"\r\n"

#: A delimiter line is ``--`` followed by the boundary.
DELIMITER_PREFIX = b"--"

#: The lookback window used to spot delimiter lines inside a part's payload
#: holds at most ``len(boundary) + LOOKBACK_SLACK`` bytes: the ``--`` prefix
#: plus two bytes of headroom.  Only the start of each payload line is kept,
#: so memory stays bounded no matter how long the lines are.
LOOKBACK_SLACK = 4

# Quoted header parameter values, e.g. the "foo" in name="foo".
QUOTED_STR_RE = re.compile(r'"((?:\\.|[^"\\])*)"\Z', re.DOTALL)
QUOTED_PAIR_RE = re.compile(r"\\(.)", re.DOTALL)


def get_boundary(content_type: str | bytes | None) -> str:
    """
    Pulls the boundary token out of a Content-Type header value, e.g.
    ``multipart/form-data; boundary=----WebKitFormBoundaryvm5A9tzU1ONaGP5B``.

    Returns an empty string if no boundary parameter is present.  The token
    is returned as-is; quoting is not handled.
    """
    if not content_type:
        return ""

    if isinstance(content_type, bytes):
        content_type = content_type.decode("latin-1")

    for item in content_type.split(";"):
        item = item.strip()
        if "boundary" in item:
            k = item.split("=")
            return k[1].strip() if len(k) > 1 else ""

    return ""


class RawPart:
    """
    The unprocessed lines of one delimited segment, as found by the scanner.

    ``header_line`` is the Content-Disposition line and ``info_line`` the line
    after it (the Content-Type for files, blank for simple fields).
    ``field_line`` is the line after that: the first line of a simple field's
    value, or the blank line ending a file part's headers.  ``body`` holds the
    payload bytes up to the next delimiter, without the CRLF preceding it.
    """

    __slots__ = ("header_line", "info_line", "field_line", "body")

    def __init__(self, header_line: bytes, info_line: bytes = b"", field_line: bytes = b"", body: bytes = b"") -> None:
        self.header_line = header_line
        self.info_line = info_line
        self.field_line = field_line
        self.body = body

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RawPart):
            return (
                self.header_line == other.header_line
                and self.info_line == other.info_line
                and self.field_line == other.field_line
                and self.body == other.body
            )
        else:
            return NotImplemented

    def __repr__(self) -> str:
        return "{}(header_line={!r}, info_line={!r}, field_line={!r}, body={})".format(
            self.__class__.__name__, self.header_line, self.info_line, self.field_line, _short_repr(self.body)
        )


class Part:
    """
    One form field or uploaded file extracted from a multipart body.

    A part with a ``filename`` is a file part; its ``type`` is the declared
    Content-Type, if any.  ``data`` is always the raw payload bytes.  ``path``
    is filled in once a file part has been saved to disk.
    """

    __slots__ = ("name", "filename", "type", "data", "path")

    def __init__(
        self,
        name: str | None = None,
        data: bytes = b"",
        filename: str | None = None,
        type: str | None = None,
        path: str | None = None,
    ) -> None:
        self.name = name
        self.data = data
        self.filename = filename
        self.type = type
        self.path = path

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Part):
            return (
                self.name == other.name
                and self.filename == other.filename
                and self.type == other.type
                and self.data == other.data
                and self.path == other.path
            )
        else:
            return NotImplemented

    def __repr__(self) -> str:
        if self.is_file:
            return "{}(name={!r}, filename={!r}, type={!r}, data={})".format(
                self.__class__.__name__, self.name, self.filename, self.type, _short_repr(self.data)
            )
        return f"{self.__class__.__name__}(name={self.name!r}, data={_short_repr(self.data)})"


def _short_repr(value: bytes) -> str:
    if len(value) > 97:
        return repr(value[:97])[:-1] + "...'"
    return repr(value)


class BaseParser:
    """
    Base class for parsers.  It holds the ``callbacks`` dictionary and knows
    how to dispatch to it: ``callback("part")`` calls ``on_part``, if set.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self.callbacks: ScannerCallbacks = {}

    def callback(self, name: CallbackName, *args: Any) -> None:
        on_name = "on_" + name
        func = self.callbacks.get(on_name)
        if func is None:
            return
        func = cast("Callable[..., Any]", func)
        self.logger.debug("Calling %s", on_name)
        func(*args)

    def set_callback(self, name: CallbackName, new_func: Callable[..., Any] | None) -> None:
        """Update the function for a callback.  Removes from the callbacks
        dict if new_func is None.
        """
        if new_func is None:
            self.callbacks.pop("on_" + name, None)  # type: ignore[misc]
        else:
            self.callbacks["on_" + name] = new_func  # type: ignore[literal-required]

    def finalize(self) -> None:
        pass  # pragma: no cover

    def __repr__(self) -> str:
        return "%s()" % self.__class__.__name__


class MultipartScanner(BaseParser):
    """
    Segments a multipart/form-data body into :class:`RawPart` objects.

    The body is scanned in a single forward pass, one byte at a time.  A CR
    immediately followed by an LF is the only line terminator.  Data may be
    fed in any number of :meth:`write` calls; :meth:`finalize` must be called
    once the whole body has been written.

    The following callbacks are supported:

    | Callback Name | Parameters | Description |
    |---------------|------------|-------------|
    | on_part_begin | None       | Called when a delimiter opening a part is found. |
    | on_part       | raw        | Called with the RawPart once the delimiter closing it is found. |
    | on_end        | None       | Called from finalize(). |

    :param boundary: The multipart boundary, without the leading ``--``.
    :param callbacks: A dictionary of callbacks.
    :param strict: If True, finalize() raises TruncatedBodyError when the body
        ends in the middle of a part.  Otherwise that part is dropped and a
        warning is logged.
    """

    def __init__(
        self, boundary: bytes | str, callbacks: ScannerCallbacks | None = None, strict: bool = True
    ) -> None:
        super().__init__()
        if isinstance(boundary, str):
            boundary = boundary.encode("latin-1")
        if not boundary:
            raise ValueError("boundary must not be empty")
        if CR in boundary or LF in boundary:
            raise ValueError("boundary must not contain CR or LF, not %r" % boundary)

        self.callbacks = callbacks if callbacks is not None else {}
        self.strict = strict
        self.boundary = boundary
        self.delimiter = DELIMITER_PREFIX + boundary
        self.lookback_size = len(boundary) + LOOKBACK_SLACK

        self.state = ScannerState.SEEK_BOUNDARY
        self.header_line = b""
        self.info_line = b""
        self.field_line = b""

        self._line = bytearray()
        self._body = bytearray()
        self._prev: int | None = None
        self._overflow = False
        self._part_open = False
        self._closed = False
        self._current_size = 0

    def write(self, data: bytes) -> int:
        """Scan some data.  Returns the number of bytes processed."""
        l = 0
        try:
            l = self._internal_write(data, len(data))
        finally:
            self._current_size += l

        return l

    def _internal_write(self, data: bytes, length: int) -> int:
        # Cache attributes in locals; they are written back at the end.
        delimiter = self.delimiter
        lookback_size = self.lookback_size
        line = self._line
        body = self._body
        state = self.state
        prev = self._prev
        overflow = self._overflow

        i = 0
        while i < length:
            c = data[i]
            crlf = c == LF and prev == CR
            prev = c

            if state == ScannerState.READ_BODY:
                body.append(c)
                if crlf:
                    del line[:]
                    overflow = False
                elif not overflow:
                    line.append(c)
                    if len(line) > lookback_size:
                        # Too long to be a delimiter line; stop watching until
                        # the next CRLF.  The bytes are already in the body.
                        del line[:]
                        overflow = True
                    elif line == delimiter:
                        self.state = state
                        self._emit_part(bytes(body[: -len(delimiter)]), self._current_size + i)
                        del line[:]
                        del body[:]
                        state = ScannerState.AWAIT_NEXT_BOUNDARY
                i += 1
                continue

            if self._closed:
                if c != CR and c != LF:
                    self.logger.warning("Skipping data after last boundary")
                    i = length
                    break
                i += 1
                continue

            if not crlf:
                line.append(c)
                i += 1
                continue

            # The line ends with the CR of the terminator.
            current = bytes(line[:-1])
            del line[:]

            if state == ScannerState.SEEK_BOUNDARY:
                if current == delimiter:
                    self.logger.debug("Found first boundary at %d", self._current_size + i)
                    self._part_open = True
                    self.callback("part_begin")
                    state = ScannerState.READ_HEADER

            elif state == ScannerState.READ_HEADER:
                self.header_line = current
                state = ScannerState.READ_INFO

            elif state == ScannerState.READ_INFO:
                self.info_line = current
                state = ScannerState.READ_FIELD_LINE

            elif state == ScannerState.READ_FIELD_LINE:
                self.field_line = current
                del body[:]
                if not self.info_line:
                    # The info line was the blank separator, so this is
                    # already the first line of the payload.
                    body.extend(current + CRLF)
                overflow = False
                state = ScannerState.READ_BODY

            elif state == ScannerState.AWAIT_NEXT_BOUNDARY:
                if current == DELIMITER_PREFIX:
                    self.logger.debug("Found last boundary at %d", self._current_size + i)
                    self._closed = True
                else:
                    self._part_open = True
                    self.callback("part_begin")
                state = ScannerState.READ_HEADER

            else:  # pragma: no cover (error case)
                msg = "Reached an unknown state %d at %d" % (state, i)
                self.logger.warning(msg)
                e = MultipartParseError(msg)
                e.offset = self._current_size + i
                raise e

            i += 1

        self.state = state
        self._prev = prev
        self._overflow = overflow
        return length

    def _emit_part(self, payload: bytes, offset: int) -> None:
        if payload[-2:] == CRLF:
            payload = payload[:-2]

        raw = RawPart(self.header_line, self.info_line, self.field_line, payload)
        self.logger.debug("Found part %r with %d bytes of data", raw.header_line, len(payload))

        self._part_open = False
        self.header_line = self.info_line = self.field_line = b""

        try:
            self.callback("part", raw)
        except ParseError as e:
            if e.offset < 0:
                e.offset = offset
            raise

    def finalize(self) -> None:
        """
        Signal the end of the body.  Raises TruncatedBodyError if a part was
        opened but never closed by a delimiter, unless ``strict`` is off.
        """
        if self._part_open:
            msg = "Body ended inside a part (state %s) at %d" % (self.state.name, self._current_size)
            if self.strict:
                e = TruncatedBodyError(msg)
                e.offset = self._current_size
                e.state = self.state
                raise e
            self.logger.warning("Dropping truncated part: %s", msg)
            self._part_open = False

        self.callback("end")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(boundary={self.boundary!r})"


def _decode_line(line: bytes) -> str:
    try:
        return line.decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedPartHeader("Part header line is not valid UTF-8: %r" % line)


def _parse_param(segment: str) -> tuple[str, str]:
    """Parses a ``key="value"`` segment of a Content-Disposition line."""
    key, sep, value = segment.partition("=")
    if not sep:
        raise MalformedPartHeader("Expected key=value in header segment %r" % segment)

    m = QUOTED_STR_RE.match(value.strip())
    if m is None:
        raise MalformedPartHeader("Expected a quoted string in header segment %r" % segment)

    return key.strip(), QUOTED_PAIR_RE.sub(r"\1", m.group(1))


def _parse_content_type(info_line: bytes) -> str | None:
    if not info_line:
        return None

    info = _decode_line(info_line)
    _, sep, value = info.partition(":")
    if not sep:
        raise MalformedPartHeader("Expected key: value in part header %r" % info)
    return value.strip()


def assemble_part(raw: RawPart) -> Part:
    """
    Turns a :class:`RawPart` into a :class:`Part`.

    The Content-Disposition parameters decide what the part is: with a
    ``filename`` it is a file whose type comes from the info line, otherwise
    it is a simple field.  A part with a ``filename`` but no Content-Type
    line is still a file, with ``type`` set to None; it is not read as a
    field just because its first payload line sits where a field's value
    would.  Raises MalformedPartHeader if the header lines cannot be parsed.
    """
    header = _decode_line(raw.header_line)

    segments = [s for s in header.split(";")[1:] if s.strip()]
    if not segments:
        raise MalformedPartHeader("No parameters found in part header %r" % header)

    params = dict(_parse_param(segment) for segment in segments)
    name = params.get("name")
    filename = params.get("filename")

    if filename is None:
        return Part(name=name, data=raw.body)

    # IE6 sends the full path of the file instead of just its name.
    if filename[1:3] == ":\\" or filename[:2] == "\\\\":
        filename = filename.split("\\")[-1]

    return Part(name=name, filename=filename, type=_parse_content_type(raw.info_line), data=raw.body)


def parse(body: bytes, boundary: bytes | str, strict: bool = True) -> list[Part]:
    """
    Parses a complete multipart/form-data body into a list of parts, in the
    order they appear in the body.

    An empty boundary, or one that never shows up in the body, gives an
    empty list.  A part with malformed headers fails the whole parse with
    MalformedPartHeader; a body that ends inside a part raises
    TruncatedBodyError unless ``strict`` is False.
    """
    if not boundary:
        return []

    parts: list[Part] = []

    def on_part(raw: RawPart) -> None:
        parts.append(assemble_part(raw))

    scanner = MultipartScanner(boundary, callbacks={"on_part": on_part}, strict=strict)
    scanner.write(body)
    scanner.finalize()
    return parts
