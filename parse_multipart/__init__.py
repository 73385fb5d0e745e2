__version__ = "0.1.0"

from .form import DiskFileStore, FormData, FormParser, create_form_parser, middleware, parse_form
from .multipart import (
    MultipartScanner,
    Part,
    RawPart,
    ScannerState,
    assemble_part,
    get_boundary,
    parse,
)

__all__ = (
    "DiskFileStore",
    "FormData",
    "FormParser",
    "MultipartScanner",
    "Part",
    "RawPart",
    "ScannerState",
    "assemble_part",
    "create_form_parser",
    "get_boundary",
    "middleware",
    "parse",
    "parse_form",
)
