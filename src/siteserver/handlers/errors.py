"""
Error pages.

404 and 500 responses use the site's own pages from the error-asset
directory when they exist:

    server_assets/
        404.html    → body of every "not found" (including blocked traversal)
        500.html    → body of every internal failure

Every other status, and any status whose asset is missing or unreadable,
gets the built-in page from error_response(). Assets are read on each
use, so editing them does not need a restart.
"""

from pathlib import Path
from typing import Optional
import logging

from ..http.response import HTTPResponse, ResponseBuilder, error_response
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class ErrorPages:
    """
    Renders error responses, preferring custom assets.

    Instances are callable so they can be handed to Router as on_error:

        pages = ErrorPages("server_assets")
        router = Router(on_error=pages)
        pages(HTTPStatus.NOT_FOUND)   # custom 404.html or built-in page
    """

    ASSETS = {
        HTTPStatus.NOT_FOUND: "404.html",
        HTTPStatus.INTERNAL_SERVER_ERROR: "500.html",
    }

    def __init__(self, error_dir: Optional[str] = None):
        self.error_dir = Path(error_dir).resolve() if error_dir else None

    def render(self, status: HTTPStatus) -> HTTPResponse:
        """
        Build the response for an error status.

        Args:
            status: 4xx or 5xx status.

        Returns:
            A fresh HTTPResponse the caller may add headers to.
        """
        status = HTTPStatus(status)
        asset = self._load_asset(status)
        if asset is None:
            return error_response(status)

        return (ResponseBuilder()
            .status(status)
            .html(asset)
            .build())

    __call__ = render

    def _load_asset(self, status: HTTPStatus) -> Optional[bytes]:
        name = self.ASSETS.get(status)
        if name is None or self.error_dir is None:
            return None

        try:
            return (self.error_dir / name).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read error page {name}: {e}")
            return None
