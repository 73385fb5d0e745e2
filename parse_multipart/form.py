from __future__ import annotations

import logging
import os
import tempfile
from numbers import Number
from typing import TYPE_CHECKING

from .exceptions import FileError, FormParserError
from .multipart import get_boundary, parse

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Mapping
    from typing import Any, Protocol, TypedDict

    from .multipart import Part

    class FileStore(Protocol):
        """Persists a file part and returns the path it was written to."""

        def save(self, part: Part) -> str: ...

    class FormParserConfig(TypedDict):
        UPLOAD_DIR: str | None
        UPLOAD_PREFIX: str
        MAX_BODY_SIZE: float
        STRICT: bool


#: Prefix for the names of files written by DiskFileStore.
UPLOAD_PREFIX = "multipart"


def _get_header(headers: Mapping[str, Any], name: str) -> Any:
    value = headers.get(name)
    if value is not None:
        return value

    lname = name.lower()
    for key, value in headers.items():
        if key.lower() == lname:
            return value
    return None


class FormData:
    """
    The fields and files of a parsed form, keyed by part name.

    Field entries hold the field's data; file entries hold the whole
    :class:`Part`.  When a name shows up more than once, its entry becomes a
    list of all the values, in order.
    """

    def __init__(self, fields: dict[str, Any] | None = None, files: dict[str, Any] | None = None) -> None:
        self.fields: dict[str, Any] = fields if fields is not None else {}
        self.files: dict[str, Any] = files if files is not None else {}

    def add(self, part: Part) -> None:
        # Parts without a name have nowhere to go.
        if not part.name:
            return

        if part.is_file:
            self._merge(self.files, part.name, part)
        else:
            self._merge(self.fields, part.name, part.data)

    @staticmethod
    def _merge(destination: dict[str, Any], name: str, value: Any) -> None:
        if name not in destination:
            destination[name] = value
        elif isinstance(destination[name], list):
            destination[name].append(value)
        else:
            destination[name] = [destination[name], value]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(fields={self.fields!r}, files={self.files!r})"


class DiskFileStore:
    """
    Writes file parts into ``upload_dir``, each under a freshly generated
    unique name of the form ``<prefix>-XXXXXXXX``.
    """

    def __init__(self, upload_dir: str, prefix: str = UPLOAD_PREFIX) -> None:
        self.logger = logging.getLogger(__name__)
        self.upload_dir = upload_dir
        self.prefix = prefix

    def save(self, part: Part) -> str:
        try:
            fd, path = tempfile.mkstemp(prefix=self.prefix + "-", dir=self.upload_dir)
        except OSError:
            self.logger.exception("Error creating upload file in %r", self.upload_dir)
            raise FileError("Error creating upload file in %r" % self.upload_dir)

        path = os.path.abspath(path)
        self.logger.info("Saving upload %r to %r", part.filename, path)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(part.data)
        except OSError:
            self.logger.exception("Error writing upload file: %r", path)
            try:
                os.unlink(path)
            except OSError:
                self.logger.warning("Could not remove partial upload file %r", path)
            raise FileError("Error writing upload file: %r" % path)

        return path

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(upload_dir={self.upload_dir!r}, prefix={self.prefix!r})"


class FormParser:
    """
    Parses a buffered multipart/form-data body into :class:`FormData`, and
    saves file parts if a file store is available.

    The following configuration keys are supported:

    | Name          | Type          | Default      | Description |
    |---------------|---------------|--------------|-------------|
    | UPLOAD_DIR    | `str | None`  | None         | Directory to save file parts in.  If None, nothing is written. |
    | UPLOAD_PREFIX | `str`         | "multipart"  | Prefix of the generated file names. |
    | MAX_BODY_SIZE | `float`       | float('inf') | Bodies longer than this are truncated before parsing. |
    | STRICT        | `bool`        | True         | Raise TruncatedBodyError on a truncated body instead of dropping the last part. |

    :param boundary: The multipart boundary.
    :param config: Configuration to merge over DEFAULT_CONFIG.
    :param file_store: An object with a ``save(part) -> path`` method.  Takes
        precedence over UPLOAD_DIR.
    """

    DEFAULT_CONFIG: FormParserConfig = {
        "UPLOAD_DIR": None,
        "UPLOAD_PREFIX": UPLOAD_PREFIX,
        "MAX_BODY_SIZE": float("inf"),
        "STRICT": True,
    }

    def __init__(self, boundary: bytes | str, config: dict[Any, Any] = {}, file_store: FileStore | None = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.boundary = boundary

        self.config: FormParserConfig = self.DEFAULT_CONFIG.copy()
        self.config.update(config)  # type: ignore[typeddict-item]

        max_size = self.config["MAX_BODY_SIZE"]
        if not isinstance(max_size, Number) or max_size < 1:
            raise ValueError("MAX_BODY_SIZE must be a positive number, not %r" % max_size)

        if file_store is None and self.config["UPLOAD_DIR"] is not None:
            file_store = DiskFileStore(self.config["UPLOAD_DIR"], self.config["UPLOAD_PREFIX"])
        self.file_store = file_store

    def parse(self, body: bytes, form: FormData | None = None) -> FormData:
        """
        Parses ``body`` and merges its parts into ``form`` (a new FormData if
        not given).  File parts are saved only after the whole body parsed.
        """
        max_size = self.config["MAX_BODY_SIZE"]
        if len(body) > max_size:
            self.logger.warning("Body size is %d (max %d), so truncating it", len(body), max_size)
            body = body[: int(max_size)]

        parts = parse(body, self.boundary, strict=self.config["STRICT"])

        if form is None:
            form = FormData()
        for part in parts:
            form.add(part)

        if self.file_store is not None:
            for part in parts:
                if part.is_file:
                    part.path = self.file_store.save(part)

        return form

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(boundary={self.boundary!r}, file_store={self.file_store!r})"


def create_form_parser(
    headers: Mapping[str, Any], config: dict[Any, Any] = {}, file_store: FileStore | None = None
) -> FormParser:
    """
    Creates a FormParser from a set of request headers.  The Content-Type
    header must be multipart/form-data and carry a boundary.
    """
    content_type = _get_header(headers, "Content-Type")
    if content_type is None:
        logging.getLogger(__name__).warning("No Content-Type header given")
        raise ValueError("No Content-Type header given!")

    if isinstance(content_type, bytes):
        content_type = content_type.decode("latin-1")

    mime_type = content_type.split(";", 1)[0].strip().lower()
    if mime_type != "multipart/form-data":
        raise FormParserError(f"Unknown Content-Type: {mime_type}")

    boundary = get_boundary(content_type)
    if not boundary:
        raise FormParserError("No boundary given")

    return FormParser(boundary, config=config, file_store=file_store)


def parse_form(
    headers: Mapping[str, Any], body: bytes, config: dict[Any, Any] = {}, file_store: FileStore | None = None
) -> FormData:
    """
    Parses a buffered multipart/form-data body, given the request's headers.

    ```python
    form = parse_form(request.headers, request.body, config={"UPLOAD_DIR": "/tmp/uploads"})
    form.fields["username"], form.files["avatar"].path
    ```
    """
    parser = create_form_parser(headers, config=config, file_store=file_store)
    return parser.parse(body)


def middleware(
    dest: str | None = None, config: dict[Any, Any] | None = None, file_store: FileStore | None = None
) -> Callable[[Any, Callable[[], Any]], Any]:
    """
    Returns a request handler that parses multipart bodies before handing
    over to the next handler.

    The request must have ``headers`` and ``body`` attributes.  Parsed fields
    and files are merged into ``request.fields`` and ``request.files``.  If
    ``dest`` is given, file parts are written there and their ``path`` is set.
    Requests that are not multipart, or have no boundary, are passed through
    untouched.
    """
    config = dict(config or {})
    if dest is not None:
        config["UPLOAD_DIR"] = dest

    logger = logging.getLogger(__name__)

    def handler(request: Any, next_handler: Callable[[], Any]) -> Any:
        content_type = _get_header(request.headers, "Content-Type")
        if isinstance(content_type, bytes):
            content_type = content_type.decode("latin-1")

        if not content_type or not get_boundary(content_type):
            logger.debug("No multipart boundary in %r, skipping", content_type)
            return next_handler()

        try:
            parser = create_form_parser(request.headers, config=config, file_store=file_store)
        except FormParserError:
            logger.warning("Unknown Content-Type: %r, skipping", content_type)
            return next_handler()

        # Map files to request.files and data to request.fields.
        fields = getattr(request, "fields", None)
        files = getattr(request, "files", None)
        form = FormData(
            fields=fields if isinstance(fields, dict) else None,
            files=files if isinstance(files, dict) else None,
        )
        parser.parse(request.body, form)

        request.fields = form.fields
        request.files = form.files
        return next_handler()

    return handler
