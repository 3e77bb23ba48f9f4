"""ASGI adapter for the key-server HTTP handler.

:func:`create_asgi_app` wraps :func:`~seal_policy.wire.http.create_http_handler`
in a plain ASGI 3 application, so any ASGI server (uvicorn, hypercorn)
can serve a :class:`KeyServer` without a web framework.  The lifespan
protocol is honoured: shutdown wipes the server's key ring.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, MutableMapping
from typing import TYPE_CHECKING, Any

from seal_policy.wire.http import create_http_handler

if TYPE_CHECKING:
    from seal_policy.server import KeyServer

logger = logging.getLogger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


def create_asgi_app(server: KeyServer) -> ASGIApp:
    """Return an ASGI 3 application serving *server*."""
    handler = create_http_handler(server)

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await _lifespan(server, receive, send)
            return
        if scope["type"] != "http":
            raise RuntimeError(f"Unsupported ASGI scope type: {scope['type']}")

        chunks: list[bytes] = []
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunks.append(message.get("body", b""))
            more_body = message.get("more_body", False)

        headers = {
            name.decode("latin-1"): value.decode("latin-1")
            for name, value in scope.get("headers", [])
        }
        status, response_headers, body = await handler(
            scope["method"], scope["path"], headers, b"".join(chunks)
        )

        payload = body.encode("utf-8")
        raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in response_headers.items()
        ]
        raw_headers.append((b"content-length", str(len(payload)).encode("ascii")))
        await send({"type": "http.response.start", "status": status, "headers": raw_headers})
        await send({"type": "http.response.body", "body": payload})

    return app


async def _lifespan(server: KeyServer, receive: Receive, send: Send) -> None:
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            logger.info("Key server %s starting", server.config.server_id)
            await send({"type": "lifespan.startup.complete"})
        elif message["type"] == "lifespan.shutdown":
            server.close()
            await send({"type": "lifespan.shutdown.complete"})
            return
