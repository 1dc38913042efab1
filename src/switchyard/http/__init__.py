"""HTTP-facing value types: the per-request context and the run outcome."""

from switchyard.http.headers import Headers
from switchyard.http.request import RequestContext
from switchyard.http.response import Response

__all__ = ["Headers", "RequestContext", "Response"]
