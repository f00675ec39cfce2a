from __future__ import annotations

import asyncio
import logging

import httpx
from starlette.requests import ClientDisconnect, Request
from starlette.responses import PlainTextResponse, StreamingResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

log = logging.getLogger(__name__)

BAD_GATEWAY_BODY = "Bad Gateway"


def matches_prefix(path: str, prefix: str) -> bool:
    """Literal, case-sensitive prefix test on the path (query string excluded)."""
    return bool(prefix) and path.startswith(prefix)


def rewrite_path(path: str, query: str, prefix: str) -> str:
    """Strip `prefix` from `path` and re-attach the query string verbatim.

    >>> rewrite_path("/api/widgets", "id=5", "/api")
    '/widgets?id=5'
    >>> rewrite_path("/api", "", "/api")
    '/'
    """
    stripped = path[len(prefix) :] or "/"
    if not stripped.startswith("/"):
        # "/apiv2" with prefix "/api": keep the request line valid.
        stripped = "/" + stripped
    if query:
        return f"{stripped}?{query}"
    return stripped


def _has_body(headers: list[tuple[bytes, bytes]]) -> bool:
    return any(k.lower() in (b"content-length", b"transfer-encoding") for k, _ in headers)


class ProxyMiddleware:
    """Relay requests under `prefix` to a single upstream, streaming both ways.

    Matching requests never reach the wrapped app. Upstream connection errors
    become a plain 502 while nothing has been sent to the caller; after that
    the connection is simply dropped.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        prefix: str,
        target: httpx.URL,
        timeout: float | None = 60.0,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.app = app
        self.prefix = prefix
        self.target = target
        self.timeout = httpx.Timeout(timeout)
        self.verify = verify
        self.transport = transport

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        raw_path = scope.get("raw_path") or scope["path"].encode("utf-8")
        path = raw_path.partition(b"?")[0].decode("latin-1")
        if not matches_prefix(path, self.prefix):
            await self.app(scope, receive, send)
            return

        query = scope.get("query_string", b"").decode("latin-1")
        await self.forward(scope, receive, send, rewrite_path(path, query, self.prefix))

    def build_headers(self, scope: Scope) -> list[tuple[bytes, bytes]]:
        headers = [(k, v) for k, v in scope["headers"] if k.lower() != b"host"]
        # netloc carries the port only when the target URL spells one out.
        headers.append((b"host", self.target.netloc))
        return headers

    async def forward(self, scope: Scope, receive: Receive, send: Send, path_with_query: str) -> None:
        method = scope["method"]
        url = self.target.copy_with(raw_path=path_with_query.encode("latin-1"))
        request = Request(scope, receive)

        # receive() belongs to the body stream until it is drained; only then
        # may anything else wait on it for a disconnect.
        body_read = asyncio.Event()
        content = None
        if _has_body(scope["headers"]):

            async def body():
                async for chunk in request.stream():
                    yield chunk
                body_read.set()

            content = body()
        else:
            body_read.set()

        # Built directly rather than via client.build_request so the client's
        # default headers (User-Agent, Accept, ...) are not mixed in.
        upstream_request = httpx.Request(
            method,
            url,
            headers=self.build_headers(scope),
            content=content,
            extensions={"timeout": self.timeout.as_dict()},
        )

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        async with httpx.AsyncClient(verify=self.verify, transport=self.transport) as client:
            try:
                upstream = await self._send_unless_disconnected(
                    client, upstream_request, receive, body_read
                )
                if upstream is None:
                    log.debug("client disconnected before upstream replied: %s %s", method, url)
                    return
                try:
                    response = StreamingResponse(
                        upstream.aiter_raw(), status_code=upstream.status_code
                    )
                    response.raw_headers = [(k.lower(), v) for k, v in upstream.headers.raw]
                    await response(scope, receive, send_wrapper)
                finally:
                    await upstream.aclose()
            except httpx.HTTPError as e:
                log.error("Proxy error: %s %s: %s", method, url, str(e) or type(e).__name__)
                if not response_started:
                    await PlainTextResponse(BAD_GATEWAY_BODY, status_code=502)(scope, receive, send)
            except ClientDisconnect:
                log.debug("client disconnected during %s %s; upstream closed", method, url)

    async def _send_unless_disconnected(
        self,
        client: httpx.AsyncClient,
        upstream_request: httpx.Request,
        receive: Receive,
        body_read: asyncio.Event,
    ) -> httpx.Response | None:
        """Send upstream, cancelling the exchange if the caller goes away first.

        Returns None when the caller disconnected before the upstream headers arrived.
        """
        send_task = asyncio.ensure_future(client.send(upstream_request, stream=True))
        watch_task = asyncio.ensure_future(_wait_for_disconnect(receive, body_read))
        try:
            await asyncio.wait({send_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (send_task, watch_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(send_task, watch_task, return_exceptions=True)

        if watch_task.cancelled():
            return send_task.result()

        if not send_task.cancelled() and send_task.exception() is None:
            await send_task.result().aclose()
        return None


async def _wait_for_disconnect(receive: Receive, body_read: asyncio.Event) -> None:
    await body_read.wait()
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            return
