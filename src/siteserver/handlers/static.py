"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Maps request paths to files under the content root and streams them.

=============================================================================
PATH RESOLUTION
=============================================================================

The resolver is the only code that turns client input into a filesystem
path. Every step below runs for every request:

    "/blog/%7Euser//./post.html?ref=x"
          │
          │ 1. drop query and fragment
          ▼
    "/blog/%7Euser//./post.html"
          │
          │ 2. percent-decode ONCE
          ▼
    "/blog/~user//./post.html"
          │
          │ 3. split on "/" and "\", drop empty and "." segments
          ▼
    ["blog", "~user", "post.html"]
          │
          │ 4. any ".." segment or NUL byte → REJECT
          ▼
    root / "blog" / "~user" / "post.html"
          │
          │ 5. Path.resolve() follows symlinks
          │ 6. result must be the root or inside it → else REJECT
          │ 7. directory → append index file, repeat 5 and 6
          │ 8. must be a regular file → else REJECT
          ▼
    ResolvedPath(path=..., content_type="text/html; charset=utf-8")

=============================================================================
WHY EACH STEP EXISTS
=============================================================================

    Attack                              Stopped by
    ─────────────────────────────────   ───────────────────────────
    /../etc/passwd                      step 4
    /%2e%2e/etc/passwd                  step 2 then step 4
    /%252e%252e/etc/passwd              step 2 runs once, leaving
                                        "%2e%2e", a harmless name
    /..%5c..%5cetc/passwd               step 3 splits on "\"
    /index.html%00.png                  step 4 (NUL)
    /link → symlink to /etc             steps 5 and 6

A rejection is answered exactly like a missing file (404), so a client
cannot learn what exists outside the root.

=============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import unquote
import logging
import os

from ..http.mime_types import get_content_type
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, format_http_date
from ..http.status_codes import HTTPStatus
from .errors import ErrorPages
from .visitors import VisitorCounter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPath:
    """
    A file inside the content root that is safe to serve.

    Only PathResolver creates these.

    Attributes:
        path: Absolute, canonical path of a regular file.
        content_type: Content-Type header value.
        is_default_document: The file is a directory's index file.
    """

    path: Path
    content_type: str
    is_default_document: bool = False


class PathResolver:
    """
    Turns a raw URL path into a ResolvedPath, or None.

    Usage:
        resolver = PathResolver("public_html")
        resolver.resolve("/")              # ResolvedPath(.../index.html)
        resolver.resolve("/../etc/passwd") # None
    """

    def __init__(self, root_dir: str, index_file: str = "index.html"):
        """
        Args:
            root_dir: Content root. Must exist.
            index_file: Default document for directory requests.

        Raises:
            ValueError: If root_dir is not a directory.
        """
        self.root_dir = Path(root_dir).resolve()
        self.index_file = index_file

        if not self.root_dir.is_dir():
            raise ValueError(f"Content root does not exist: {root_dir}")

    def resolve(self, url_path: str) -> Optional[ResolvedPath]:
        """
        Resolve a raw request path.

        Args:
            url_path: Path as received, still percent-encoded. A query
                      string or fragment, if present, is ignored.

        Returns:
            ResolvedPath, or None if the path is rejected or names
            nothing servable.
        """
        # ─────── STEP 1: drop query and fragment ───────
        raw = url_path.split("?", 1)[0].split("#", 1)[0]

        # ─────── STEP 2: decode exactly once ───────
        decoded = unquote(raw)

        if "\x00" in decoded:
            logger.warning(f"Rejected path with NUL byte: {url_path!r}")
            return None

        # ─────── STEP 3: normalize separators ───────
        segments = [
            segment
            for segment in decoded.replace("\\", "/").split("/")
            if segment and segment != "."
        ]

        # ─────── STEP 4: no parent references ───────
        if ".." in segments:
            logger.warning(f"Rejected traversal attempt: {url_path!r}")
            return None

        # ─────── STEPS 5-8: canonicalize and check containment ───────
        try:
            candidate = self._contained(self.root_dir.joinpath(*segments))
            if candidate is None:
                logger.warning(f"Rejected path outside content root: {url_path!r}")
                return None

            is_default_document = candidate.name == self.index_file
            if candidate.is_dir():
                candidate = self._contained(candidate / self.index_file)
                if candidate is None:
                    logger.warning(f"Rejected index outside content root: {url_path!r}")
                    return None
                is_default_document = True

            if not candidate.is_file():
                return None
        except (OSError, RuntimeError) as e:
            # Over-long names, symlink loops
            logger.debug(f"Could not resolve {url_path!r}: {e}")
            return None

        return ResolvedPath(
            path=candidate,
            content_type=get_content_type(candidate),
            is_default_document=is_default_document,
        )

    def _contained(self, path: Path) -> Optional[Path]:
        """Canonical form of path if it lies within the root, else None."""
        real = path.resolve()
        try:
            real.relative_to(self.root_dir)
        except ValueError:
            return None
        return real


class StaticFileHandler:
    """
    Serves files from the content root.

    =========================================================================
    FLOW
    =========================================================================

        GET /about/
            │
            ├── resolver.resolve("/about/")
            │       None        → 404 (custom page if present)
            │
            ├── open(path, "rb") and fstat()
            │       OSError     → 500 (custom page if present)
            │
            ├── default document and GET → counter.increment_and_read()
            │
            └── 200, body streamed from the open file

    The file is opened here, in the handler, so a file that vanishes or
    cannot be read is reported as 500 before any byte is sent.
    =========================================================================
    """

    def __init__(
        self,
        resolver: PathResolver,
        error_pages: ErrorPages,
        counter: Optional[VisitorCounter] = None,
        cache_max_age: int = 0,
    ):
        """
        Args:
            resolver: Path resolver for the content root.
            error_pages: Renders 404 and 500 responses.
            counter: Incremented on qualifying page views. None disables
                     counting.
            cache_max_age: Cache-Control max-age; 0 sends "no-cache" so
                           browsers revalidate.
        """
        self.resolver = resolver
        self.error_pages = error_pages
        self.counter = counter
        self.cache_max_age = cache_max_age

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        resolved = self.resolver.resolve(request.path)
        if resolved is None:
            return self.error_pages(HTTPStatus.NOT_FOUND)

        try:
            fileobj = open(resolved.path, "rb")
        except OSError as e:
            logger.error(f"Failed to open {resolved.path}: {e}")
            return self.error_pages(HTTPStatus.INTERNAL_SERVER_ERROR)

        try:
            stat = os.fstat(fileobj.fileno())
        except OSError as e:
            fileobj.close()
            logger.error(f"Failed to stat {resolved.path}: {e}")
            return self.error_pages(HTTPStatus.INTERNAL_SERVER_ERROR)

        if self.counter is not None and self._is_visit(request, resolved):
            visits = self.counter.increment_and_read()
            logger.debug(f"Visit #{visits} from {request.client_ip}")

        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

        builder = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .stream(fileobj, stat.st_size, resolved.content_type)
            .header("Last-Modified", format_http_date(modified)))

        if self.cache_max_age > 0:
            builder.cache(self.cache_max_age)
        else:
            builder.header("Cache-Control", "no-cache")

        return builder.build()

    @staticmethod
    def _is_visit(request: HTTPRequest, resolved: ResolvedPath) -> bool:
        """A GET that lands on a default document."""
        return request.method == "GET" and resolved.is_default_document
