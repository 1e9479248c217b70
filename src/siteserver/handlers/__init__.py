"""
=============================================================================
REQUEST HANDLERS
=============================================================================

The handlers the router dispatches to:

1. StaticFileHandler / PathResolver
   - Every path that is not a built-in endpoint
   - Traversal-safe resolution under the content root
   - Streams the file, counts visits to default documents

2. VisitorCountHandler / VisitorCounter
   - GET /visitor-count → current count as text/plain

3. ErrorPages
   - 404 and 500 bodies from the error-asset directory, built-in
     pages otherwise

=============================================================================
USAGE
=============================================================================

    counter = VisitorCounter()
    pages = ErrorPages("server_assets")
    static = StaticFileHandler(PathResolver("public_html"), pages, counter)

    router = Router(fallback=static.handle, on_error=pages)
    router.add_route("/visitor-count", VisitorCountHandler(counter).handle)

=============================================================================
"""

from .errors import ErrorPages
from .static import PathResolver, ResolvedPath, StaticFileHandler
from .visitors import VisitorCounter, VisitorCountHandler

__all__ = [
    "ErrorPages",
    "PathResolver",
    "ResolvedPath",
    "StaticFileHandler",
    "VisitorCounter",
    "VisitorCountHandler",
]
