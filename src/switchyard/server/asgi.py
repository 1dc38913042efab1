"""ASGI adapter — serves a ``Router`` to any ASGI 3 server.

The only component that touches raw ASGI. Converts the scope and body
into a ``RequestContext``, runs the synchronous ``Router.run`` on a
worker thread so the event loop keeps serving other requests, and sends
the ``Response`` back through ``send()``.
"""

import json
import logging
from typing import Any
from urllib.parse import parse_qsl

import anyio.to_thread

from switchyard._internal.asgi import Receive, Scope, Send
from switchyard.errors import HTTPError
from switchyard.http.request import RequestContext
from switchyard.http.response import Response
from switchyard.router import Router
from switchyard.server.errors import handle_http_error

logger = logging.getLogger("switchyard.server")


class RouterApp:
    """ASGI application wrapping a router.

    Usage::

        router = Router()
        ...
        app = RouterApp(router)   # hand to any ASGI server
    """

    __slots__ = ("router",)

    def __init__(self, router: Router) -> None:
        self.router = router

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return
        if scope["type"] != "http":
            return

        try:
            ctx = await build_context(scope, receive)
        except HTTPError as exc:
            fallback = RequestContext(method=scope.get("method", "GET"), path=scope.get("path", "/"))
            await send_response(handle_http_error(exc, fallback), send)
            return

        response = await anyio.to_thread.run_sync(self.router.run, ctx)
        await send_response(response, send)

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        """Build the route table at startup, before the first request."""
        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    await anyio.to_thread.run_sync(lambda: self.router.table)
                except Exception as exc:
                    logger.exception("Route table build failed at startup")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})

            elif msg_type == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return


async def build_context(scope: Scope, receive: Receive) -> RequestContext:
    """Translate an ASGI http scope (and its body) into a ``RequestContext``.

    Form-encoded and JSON-object bodies are parsed into ``form``.
    Raises ``HTTPError(400)`` for a JSON body that does not parse.
    """
    headers = tuple(
        (name.decode("latin-1"), value.decode("latin-1")) for name, value in scope.get("headers", ())
    )
    query_string = scope.get("query_string", b"").decode("latin-1")
    client = scope.get("client")
    uri = f"{scope['path']}?{query_string}" if query_string else scope["path"]

    return RequestContext.build(
        scope["method"],
        uri,
        headers=headers,
        form=await _read_form(headers, receive),
        client=client[0] if client else None,
    )


async def _read_form(headers: tuple[tuple[str, str], ...], receive: Receive) -> dict[str, Any]:
    content_type = next((v for k, v in headers if k.lower() == "content-type"), "")
    body = await _read_body(receive)
    if not body:
        return {}

    if content_type.startswith("application/x-www-form-urlencoded"):
        return dict(parse_qsl(body.decode("utf-8", "replace"), keep_blank_values=True))

    if "json" in content_type:
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise HTTPError(status=400, detail=f"Invalid JSON body: {exc}") from exc
        return data if isinstance(data, dict) else {}

    return {}


async def _read_body(receive: Receive) -> bytes:
    chunks: list[bytes] = []
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunk = message.get("body", b"")
        if chunk:
            chunks.append(chunk)
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


def _body_allowed(status: int) -> bool:
    """Whether an HTTP status code permits a response body."""
    # RFC: 1xx, 204, and 304 responses do not include a message body.
    return not (100 <= status < 200 or status in {204, 304})


def encode_body(response: Response) -> tuple[bytes, str]:
    """Return ``(body_bytes, default_content_type)`` for *response*."""
    body = response.body
    if body is None:
        return b"", "text/plain; charset=utf-8"
    if isinstance(body, bytes):
        return body, "application/octet-stream"
    if isinstance(body, str):
        return body.encode("utf-8"), "text/plain; charset=utf-8"
    return json.dumps(body, default=str).encode("utf-8"), "application/json"


async def send_response(response: Response, send: Send) -> None:
    """Translate a Response into ASGI send() calls."""
    body, content_type = encode_body(response)
    if not _body_allowed(response.status):
        body = b""

    raw_headers: list[tuple[bytes, bytes]] = []
    if response.header("content-type") is None:
        raw_headers.append((b"content-type", content_type.encode("latin-1")))
    for name, value in response.headers:
        raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))
    raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))

    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": raw_headers,
        }
    )
    await send(
        {
            "type": "http.response.body",
            "body": body,
        }
    )
