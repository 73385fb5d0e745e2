from __future__ import annotations


class FormParserError(ValueError):
    """Base error class for our form parser."""


class ParseError(FormParserError):
    """This exception (or a subclass) is raised when there is an error while
    parsing something.
    """

    #: This is the offset in the body at which the parse error occurred.  It
    #: will be -1 if not specified.
    offset = -1


class MultipartParseError(ParseError):
    """This is a specific error that is raised when the MultipartScanner
    detects an error while parsing.
    """


class MalformedPartHeader(MultipartParseError):
    """Raised when a part's Content-Disposition or Content-Type line does not
    have the expected ``key="value"`` or ``key: value`` shape.
    """


class TruncatedBodyError(MultipartParseError):
    """Raised when the body ends in the middle of a part, i.e. before the
    delimiter that would have closed it.
    """

    #: The scanner state the input ended in.
    state: int | None = None


class FileError(FormParserError, OSError):
    """Exception class for problems with persisting file parts."""
