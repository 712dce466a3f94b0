"""REST API and web dashboard for the Z-Wave lock controller.

Exposes the lock operations over HTTP and streams node events with
Server-Sent Events (SSE).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os

from aiohttp import web

import commands
import inspection
from config import DEFAULT_WEB_PORT
from context import AppContext
from errors import (
    CommandRejectedError,
    ConfigError,
    InvalidFormatError,
    NotFoundError,
    NotReadyError,
    UnreachableError,
    UnsupportedCommandClassError,
    ZWaveLockError,
)
from events import NodeEvent
from models import SetCodeOutcome

_LOGGER = logging.getLogger(__name__)

STATIC_DIR = os.path.join(os.path.dirname(__file__), "static")

# Events buffered per SSE client; the oldest are dropped for slow readers
SSE_QUEUE_SIZE = 100

# Most specific first
ERROR_STATUS = (
    (UnsupportedCommandClassError, 422),
    (NotFoundError, 404),
    (InvalidFormatError, 400),
    (CommandRejectedError, 422),
    (NotReadyError, 503),
    (UnreachableError, 504),
    (ConfigError, 500),
)

SET_CODE_STATUS = {
    SetCodeOutcome.CONFIRMED: 200,
    SetCodeOutcome.REJECTED_LIKELY_DUPLICATE: 409,
    SetCodeOutcome.REJECTED_UNKNOWN_REASON: 422,
    SetCodeOutcome.DEVICE_UNREACHABLE: 504,
}


def status_for_error(err: ZWaveLockError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(err, error_type):
            return status
    return 500


def put_latest(queue: asyncio.Queue, event: NodeEvent) -> None:
    """Queue an event, dropping the oldest one when the queue is full."""
    if queue.full():
        queue.get_nowait()
        _LOGGER.debug("SSE queue full, dropped oldest event")
    queue.put_nowait(event)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Translate lock errors into JSON error responses."""
    try:
        return await handler(request)
    except ZWaveLockError as err:
        status = status_for_error(err)
        _LOGGER.info("%s %s -> %d: %s", request.method, request.path, status, err)
        return web.json_response(
            {"error": str(err), "kind": type(err).__name__}, status=status
        )


class Dashboard:
    """HTTP API and dashboard with SSE for live node events."""

    HEARTBEAT_SEC = 30

    def __init__(self, ctx: AppContext, host: str = "0.0.0.0", port: int = DEFAULT_WEB_PORT):
        self._ctx = ctx
        self._host = host
        self._port = port
        self._app = web.Application(middlewares=[error_middleware])
        self._runner: web.AppRunner | None = None
        self._sse_clients = 0

        router = self._app.router
        router.add_get("/", self._handle_index)
        router.add_get("/health", self._handle_health)
        router.add_get("/nodes", self._handle_nodes)
        router.add_get(r"/nodes/{node_id:\d+}", self._handle_node)
        router.add_get(r"/nodes/{node_id:\d+}/status", self._handle_status)
        router.add_post(r"/nodes/{node_id:\d+}/lock", self._handle_lock)
        router.add_post(r"/nodes/{node_id:\d+}/unlock", self._handle_unlock)
        router.add_post(r"/nodes/{node_id:\d+}/reinterview", self._handle_reinterview)
        router.add_get(r"/nodes/{node_id:\d+}/codes", self._handle_list_codes)
        router.add_put(r"/nodes/{node_id:\d+}/codes/{slot:\d+}", self._handle_set_code)
        router.add_delete(r"/nodes/{node_id:\d+}/codes/{slot:\d+}", self._handle_delete_code)
        router.add_get(r"/nodes/{node_id:\d+}/events", self._handle_sse)
        router.add_get("/codes", self._handle_stored_codes)
        router.add_get("/events", self._handle_sse)
        router.add_get("/api/diagnostics", self._handle_diagnostics)
        if os.path.isdir(STATIC_DIR):
            router.add_static("/static", STATIC_DIR, show_index=False)

    @property
    def app(self) -> web.Application:
        return self._app

    def _require_ready(self) -> None:
        """Fail fast with 503 instead of waiting for the driver."""
        if not self._ctx.connection.ready:
            raise NotReadyError("Z-Wave driver not ready")

    @staticmethod
    def _node_id(request: web.Request) -> int:
        return int(request.match_info["node_id"])

    async def _handle_index(self, request: web.Request) -> web.Response:
        """Serve the dashboard HTML page."""
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return web.FileResponse(index_path)
        return web.Response(text="Dashboard HTML not found", status=404)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "driver_ready": self._ctx.connection.ready,
            "connection": self._ctx.connection.get_diagnostics(),
        })

    async def _handle_nodes(self, request: web.Request) -> web.Response:
        self._require_ready()
        return web.json_response({"nodes": await inspection.list_nodes(self._ctx)})

    async def _handle_node(self, request: web.Request) -> web.Response:
        self._require_ready()
        report = await inspection.inspect_node(self._ctx, self._node_id(request))
        return web.json_response(report)

    async def _handle_status(self, request: web.Request) -> web.Response:
        self._require_ready()
        report = await commands.get_status(self._ctx, self._node_id(request))
        return web.json_response(report.to_dict())

    async def _handle_lock(self, request: web.Request) -> web.Response:
        self._require_ready()
        result = await commands.lock_door(self._ctx, self._node_id(request))
        return web.json_response({"success": True, **result.to_dict()})

    async def _handle_unlock(self, request: web.Request) -> web.Response:
        self._require_ready()
        result = await commands.unlock_door(self._ctx, self._node_id(request))
        return web.json_response({"success": True, **result.to_dict()})

    async def _handle_reinterview(self, request: web.Request) -> web.Response:
        self._require_ready()
        node_id = self._node_id(request)
        await commands.reinterview_node(self._ctx, node_id)
        return web.json_response({"success": True, "node_id": node_id})

    async def _handle_list_codes(self, request: web.Request) -> web.Response:
        self._require_ready()
        listing = await commands.get_user_codes(self._ctx, self._node_id(request))
        return web.json_response(listing.to_dict())

    async def _handle_set_code(self, request: web.Request) -> web.Response:
        self._require_ready()
        try:
            body = await request.json()
        except json.JSONDecodeError as err:
            raise InvalidFormatError("Request body must be JSON") from err
        if not isinstance(body, dict):
            raise InvalidFormatError("Request body must be a JSON object")
        pin = body.get("pin")
        if not isinstance(pin, str):
            raise InvalidFormatError("pin must be a string of 4 to 8 digits")
        result = await commands.set_user_code(
            self._ctx,
            self._node_id(request),
            int(request.match_info["slot"]),
            pin,
            label=str(body.get("label", "")),
        )
        return web.json_response(result.to_dict(), status=SET_CODE_STATUS[result.outcome])

    async def _handle_delete_code(self, request: web.Request) -> web.Response:
        self._require_ready()
        result = await commands.delete_user_code(
            self._ctx, self._node_id(request), int(request.match_info["slot"])
        )
        return web.json_response(result.to_dict())

    async def _handle_stored_codes(self, request: web.Request) -> web.Response:
        return web.json_response({"codes": self._ctx.codes.list_all()})

    async def _handle_diagnostics(self, request: web.Request) -> web.Response:
        """Return diagnostics info."""
        return web.json_response({
            "connection": self._ctx.connection.get_diagnostics(),
            "sse_clients": self._sse_clients,
            "event_subscribers": self._ctx.events.subscriber_count,
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        """Stream node events, one node or all nodes."""
        node_id = None
        if "node_id" in request.match_info:
            self._require_ready()
            node_id = self._node_id(request)
            # 404 before the stream starts
            await self._ctx.node(node_id)

        queue: asyncio.Queue[NodeEvent] = asyncio.Queue(maxsize=SSE_QUEUE_SIZE)
        response = web.StreamResponse(
            status=200,
            reason="OK",
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )

        subscription = None
        self._sse_clients += 1
        _LOGGER.debug("SSE client connected (%d total)", self._sse_clients)
        try:
            subscription = self._ctx.events.subscribe(
                node_id, lambda event: put_latest(queue, event)
            )
            await response.prepare(request)

            initial = {
                "type": "connected",
                "node_id": node_id,
                "events": self._ctx.events.recent(20, node_id),
            }
            await response.write(f"data: {json.dumps(initial)}\n\n".encode("utf-8"))

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), self.HEARTBEAT_SEC)
                except asyncio.TimeoutError:
                    await response.write(b": heartbeat\n\n")
                    continue
                payload = {"type": "event", **event.to_dict()}
                await response.write(f"data: {json.dumps(payload)}\n\n".encode("utf-8"))
        except (ConnectionResetError, ConnectionAbortedError):
            pass
        except asyncio.CancelledError:
            pass
        finally:
            if subscription is not None:
                subscription.cancel()
            self._sse_clients -= 1
            _LOGGER.debug(
                "SSE client disconnected (%d remaining)", self._sse_clients
            )

        return response

    async def start(self) -> None:
        """Start the web server."""
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        _LOGGER.info(
            "API running at http://%s:%d",
            self._host,
            self._port,
        )

    async def stop(self) -> None:
        """Stop the web server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        _LOGGER.info("API stopped")
