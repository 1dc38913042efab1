"""Error handling for routed requests.

Maps ``HTTPError`` exceptions and unexpected failures to ``Response``
objects. Diagnostic detail for 500s is only included in debug mode.
"""

import logging
import traceback

from switchyard.errors import HTTPError
from switchyard.http.request import RequestContext
from switchyard.http.response import Response

logger = logging.getLogger("switchyard.server")


def handle_http_error(exc: HTTPError, ctx: RequestContext) -> Response:
    """Map an HTTPError (404, 405, 429, ...) to a Response with its headers."""
    logger.debug("%d %s %s: %s", exc.status, ctx.method, ctx.path, exc.detail)

    body = {"error": exc.detail or f"Error {exc.status}"}
    return Response(body=body, status=exc.status, headers=exc.headers)


def handle_internal_error(exc: Exception, ctx: RequestContext, *, debug: bool) -> Response:
    """Handle unexpected exceptions as 500 errors."""
    logger.exception("500 %s %s", ctx.method, ctx.path)

    body: dict[str, object] = {"error": "Internal Server Error"}
    if debug:
        body["exception"] = type(exc).__qualname__
        body["message"] = str(exc)
        body["traceback"] = traceback.format_exception(exc)
    return Response(body=body, status=500)
