"""HTTP front end for the relay.

Serves the caller-facing routes and hands every ``/mcp/{secret}`` request
to the response relay after the secret gate and header translation.

Architecture:
  MCP client (LLM tool-calling client)
    ↕ HTTP / SSE (this proxy)
  RelayProxy (host:port)
    ↕ HTTP / SSE, Authorization: Bearer <RENDER_API_KEY>
  Upstream MCP endpoint (upstream_url)

Routes:
  GET  /                          liveness, plain ``ok``
  GET  /mcp/{secret}/health       gate-checked health JSON
  GET  /mcp/{secret}/tools        gate-checked tool catalog
  POST /mcp/{secret}/tools/{name} gate-checked named tool call
  *    /mcp/{secret}              gate-checked relay to the upstream
  *    /mcp                       relay in open mode (401 when a secret is set)
"""

from __future__ import annotations

import asyncio
import json as _json
import signal
from sys import platform as _platform
from typing import Any, Awaitable, Callable

from aiohttp import ClientSession, web
from rich.console import Console

from mcprelay.audit.logger import RelayLogger
from mcprelay.config.schema import RelayConfig
from mcprelay.proxy.dispatch import OutboundRequest, UpstreamDispatcher, make_session
from mcprelay.proxy.errors import RelayError, ToolArgumentError, Unauthorized
from mcprelay.proxy.gate import is_authorized
from mcprelay.proxy.headers import translate_request_headers
from mcprelay.proxy.relay import RelaySession, ResponseRelay
from mcprelay.tools.catalog import TOOLS
from mcprelay.tools.executor import ToolExecutor

_console = Console(stderr=True)

_Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_SESSION_KEY = "relay_session"


class RelayProxy:
    """Single-upstream streaming reverse proxy.

    Args:
        config: Resolved, immutable configuration.
        logger: Request and lifecycle logger.
    """

    def __init__(self, config: RelayConfig, logger: RelayLogger) -> None:
        self._config = config
        self._logger = logger
        self._session: ClientSession | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def make_app(self) -> web.Application:
        """Build the aiohttp application with routes and error middleware."""
        app = web.Application(
            middlewares=[self._make_error_middleware()],
            client_max_size=self._config.max_body_bytes,
        )
        app.router.add_get("/", self._handle_liveness)
        app.router.add_get("/mcp/{secret}/health", self._handle_health)
        app.router.add_get("/mcp/{secret}/tools", self._handle_tool_list)
        app.router.add_post("/mcp/{secret}/tools/{name}", self._handle_tool_call)
        app.router.add_route("*", "/mcp/{secret}", self._handle_relay)
        app.router.add_route("*", "/mcp", self._handle_relay)
        return app

    async def run(self, shutdown_event: asyncio.Event | None = None) -> None:
        """Start the server and block until shutdown.

        Args:
            shutdown_event: Optional external event to trigger shutdown.
                If *None*, the proxy registers its own SIGINT/SIGTERM handlers.
        """
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_exception)

        # handler_cancellation: a caller that disconnects cancels its
        # handler, which in turn cancels the outbound request.
        runner = web.AppRunner(
            self.make_app(), handler_cancellation=True, access_log=None
        )
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)

        own_event = shutdown_event is None
        if shutdown_event is None:
            shutdown_event = asyncio.Event()

        if own_event and _platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, shutdown_event.set)

        reason = "signal received"
        try:
            try:
                await site.start()
            except OSError as e:
                reason = f"bind failed: {e}"
                _console.print(
                    f"[bold red]Error:[/bold red] Failed to bind to "
                    f"{self._config.host}:{self._config.port}: {e}",
                    highlight=False,
                )
                return

            self._logger.log_startup(self._config)
            _console.print(
                f"[bold #00ff88]Listening on http://{self._config.host}:{self._config.port}"
                f"[/bold #00ff88]",
            )
            _console.print("[dim]Press Ctrl+C to stop[/dim]")

            await shutdown_event.wait()
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        finally:
            if own_event and _platform != "win32":
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.remove_signal_handler(sig)
            if self._session is not None:
                await self._session.close()
            await runner.cleanup()
            loop.set_exception_handler(previous_handler)
            self._logger.log_shutdown(reason)

    async def _get_session(self) -> ClientSession:
        """Get or create the shared upstream session."""
        if self._session is None or self._session.closed:
            self._session = make_session()
        return self._session

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        """Log asynchronous failures nobody awaited; keep the process alive."""
        self._logger.log_unhandled(
            context.get("message", "unhandled exception in event loop"),
            context.get("exception"),
        )

    # ------------------------------------------------------------------
    # Error middleware
    # ------------------------------------------------------------------

    def _make_error_middleware(self) -> Callable[..., Awaitable[web.StreamResponse]]:
        logger = self._logger

        @web.middleware
        async def error_middleware(request: web.Request, handler: _Handler) -> web.StreamResponse:
            """Render failures as JSON and log every request outcome."""
            try:
                response = await handler(request)
            except web.HTTPException as e:
                logger.log_http_request(request.method, request.path, e.status)
                raise
            except RelayError as e:
                if isinstance(e, Unauthorized):
                    logger.log_auth_failure(request.method, request.path)
                else:
                    logger.log_relay_error(e.kind, e.message, path=request.path)
                response = web.json_response(e.to_body(), status=e.status)
            except Exception as e:
                logger.log_unhandled(f"{request.method} {request.path}", e)
                response = web.json_response({"error": str(e)}, status=500)

            session: RelaySession | None = request.get(_SESSION_KEY)
            if session is not None and session.mode != "none":
                if session.client_disconnected:
                    logger.log_client_disconnect(request.path, session.bytes_relayed)
                elif session.failure is not None:
                    logger.log_relay_error(
                        "upstream_stream_error", session.failure, path=request.path,
                    )
                logger.log_http_request(
                    request.method,
                    request.path,
                    response.status,
                    mode=session.mode,
                    bytes_relayed=session.bytes_relayed,
                    chunks=session.chunk_count,
                    duration_ms=session.duration_ms,
                )
            else:
                logger.log_http_request(request.method, request.path, response.status)
            return response

        return error_middleware

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    async def _handle_liveness(self, request: web.Request) -> web.Response:
        return web.Response(text="ok")

    async def _handle_health(self, request: web.Request) -> web.Response:
        self._check_gate(request)
        return web.json_response({"ok": True, "proxy": True})

    async def _handle_tool_list(self, request: web.Request) -> web.Response:
        self._check_gate(request)
        return web.json_response({"tools": [spec.to_dict() for spec in TOOLS.values()]})

    async def _handle_tool_call(self, request: web.Request) -> web.Response:
        """Execute one named tool. Body is a JSON object of arguments."""
        self._check_gate(request)
        name = request.match_info["name"]

        raw = await request.read()
        arguments: Any = {}
        if raw.strip():
            try:
                arguments = _json.loads(raw)
            except ValueError:
                raise ToolArgumentError("Request body must be a JSON object") from None
        if not isinstance(arguments, dict):
            raise ToolArgumentError("Request body must be a JSON object")

        executor = ToolExecutor(await self._get_session(), self._config)
        try:
            result = await executor.execute(name, arguments)
        except RelayError as e:
            self._logger.log_tool_call(name, e.status)
            raise
        self._logger.log_tool_call(name, 200)
        return web.json_response(result)

    async def _handle_relay(self, request: web.Request) -> web.StreamResponse:
        """Gate, translate, dispatch, relay."""
        self._check_gate(request)

        session = RelaySession()
        request[_SESSION_KEY] = session

        try:
            headers = translate_request_headers(request.headers, self._config.api_key)
            raw_body = await request.read()
            outbound = OutboundRequest.build(
                request.method,
                self._config.upstream_url,
                headers,
                raw_body,
                self._config.timeout_ms,
                query_string=request.rel_url.raw_query_string,
            )
            relay = ResponseRelay(UpstreamDispatcher(await self._get_session()))
            return await relay.relay(request, outbound, session)
        except RelayError as e:
            session.fail(e.kind)
            raise
        except asyncio.CancelledError:
            session.client_disconnected = True
            session.fail("client_disconnect")
            self._logger.log_client_disconnect(request.path, session.bytes_relayed)
            raise

    def _check_gate(self, request: web.Request) -> None:
        """Raise Unauthorized unless the path secret passes the gate."""
        supplied = request.match_info.get("secret")
        if not is_authorized(self._config.path_secret, supplied):
            raise Unauthorized()

