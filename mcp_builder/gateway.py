"""Aggregating tool gateway over deployed servers.

Every deployed server's tools are exposed under one MCP endpoint, namespaced
as ``<slug>/<tool>``. Calls are forwarded to the owning deployment's
``/tools/call`` route. The gateway speaks JSON-RPC 2.0 (``initialize``,
``tools/list``, ``tools/call``) plus a small REST fallback, and can also be
served over stdio with the ``mcp`` SDK.
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import deque
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .errors import ServerNotFoundError
from .models import GeneratedServer, ServerStatus

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "mcp-builder-gateway"
SERVER_VERSION = "1.0.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
UNAUTHORIZED = -32001
RATE_LIMITED = -32002


class JsonRpcError(Exception):
    """An error that maps onto a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


def split_tool_name(name: str) -> tuple[str, str]:
    """Split ``slug/tool`` at the first slash."""
    slug, sep, tool = name.partition("/")
    if not sep or not slug or not tool:
        raise JsonRpcError(
            INVALID_PARAMS, f"Invalid tool name format: {name}. Expected 'integration/tool'"
        )
    return slug, tool


def _response(request_id: Any, result: Any = None, error: JsonRpcError | None = None) -> dict:
    body: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        body["error"] = error.to_dict()
    else:
        body["result"] = result
    return body


class SlidingWindowLimiter:
    """Per-key request counter over a one minute sliding window."""

    def __init__(self, window: float = 60.0, clock=time.monotonic):
        self.window = window
        self.clock = clock
        self._hits: dict[str, deque[float]] = {}

    def allow(self, key: str, limit: int) -> bool:
        if limit <= 0:
            return True
        now = self.clock()
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - self.window:
            hits.popleft()
        if len(hits) >= limit:
            return False
        hits.append(now)
        return True


class ToolGateway:
    """JSON-RPC dispatcher that fronts every deployed server in a store.

    Example:
        gateway = ToolGateway(store, secret="s3cret")
        reply = await gateway.handle_async(body, {"x-api-key": "s3cret"})
    """

    def __init__(
        self,
        store,
        *,
        secret: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        limiter: SlidingWindowLimiter | None = None,
    ):
        self.store = store
        self.secret = secret
        self.timeout = timeout
        self.limiter = limiter or SlidingWindowLimiter()
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Auth and lookup
    # ------------------------------------------------------------------

    def authorize(self, headers: dict[str, str] | None) -> bool:
        """Check the ``x-api-key`` header against the shared secret.

        Without a configured secret any non-empty key is accepted.
        """
        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        key = lowered.get("x-api-key") or ""
        if not key:
            return False
        if self.secret is None:
            return True
        return hmac.compare_digest(key.encode(), self.secret.encode())

    async def deployed_servers(self) -> list[GeneratedServer]:
        servers = await self.store.list()
        return [s for s in servers if s.status == ServerStatus.DEPLOYED and s.deployment_url]

    async def _find(self, slug: str) -> GeneratedServer:
        for server in await self.deployed_servers():
            if server.slug == slug:
                return server
        raise ServerNotFoundError(f"No deployed integration named '{slug}'")

    # ------------------------------------------------------------------
    # Tool operations
    # ------------------------------------------------------------------

    async def list_tools_async(self) -> list[dict]:
        """Namespaced tool listing across all deployed servers."""
        tools = []
        for server in await self.deployed_servers():
            for tool in server.tools:
                tools.append(
                    {
                        "name": f"{server.slug}/{tool.name}",
                        "description": tool.description,
                        "inputSchema": tool.schema_,
                    }
                )
        return tools

    async def call_tool_async(
        self,
        name: str,
        arguments: dict | None = None,
        api_key: str | None = None,
    ) -> Any:
        """Forward a namespaced tool call to the owning deployment.

        Raises:
            JsonRpcError: For malformed names, unknown servers, rate limiting
                or upstream failures
        """
        slug, tool = split_tool_name(name)
        try:
            server = await self._find(slug)
        except ServerNotFoundError as e:
            raise JsonRpcError(INVALID_PARAMS, e.message) from e
        if not any(t.name == tool for t in server.tools):
            raise JsonRpcError(INVALID_PARAMS, f"Unknown tool '{tool}' for integration '{slug}'")
        if not self.limiter.allow(server.id, server.rate_limit):
            raise JsonRpcError(RATE_LIMITED, f"Rate limit exceeded for '{slug}'")

        url = f"{server.deployment_url.rstrip('/')}/tools/call"
        headers = {"x-api-key": api_key} if api_key else {}
        try:
            response = await self.client.post(
                url, json={"name": tool, "arguments": arguments or {}}, headers=headers
            )
        except httpx.HTTPError as e:
            logger.warning("Tool call %s failed: %s", name, e)
            raise JsonRpcError(INTERNAL_ERROR, f"Upstream request failed: {e}") from e

        if response.status_code >= 400:
            raise JsonRpcError(
                INTERNAL_ERROR,
                f"Upstream returned HTTP {response.status_code}",
                {"body": response.text[:500]},
            )
        try:
            return response.json()
        except ValueError:
            return {"content": [{"type": "text", "text": response.text}]}

    # ------------------------------------------------------------------
    # JSON-RPC
    # ------------------------------------------------------------------

    async def handle_async(
        self,
        payload: str | bytes | dict | list,
        headers: dict[str, str] | None = None,
    ) -> dict | list | None:
        """Handle one JSON-RPC message or a batch of them.

        Returns None for notifications. A batch yields the list of replies
        to its requests, or None when it held only notifications.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError:
                return _response(None, error=JsonRpcError(PARSE_ERROR, "Parse error"))

        if isinstance(payload, list):
            if not payload:
                return _response(None, error=JsonRpcError(INVALID_REQUEST, "Invalid Request"))
            replies = [await self._handle_one(message, headers) for message in payload]
            replies = [reply for reply in replies if reply is not None]
            return replies or None
        return await self._handle_one(payload, headers)

    async def _handle_one(self, payload: Any, headers: dict[str, str] | None) -> dict | None:
        if not isinstance(payload, dict) or payload.get("jsonrpc") != "2.0" or "method" not in payload:
            request_id = payload.get("id") if isinstance(payload, dict) else None
            return _response(request_id, error=JsonRpcError(INVALID_REQUEST, "Invalid Request"))

        request_id = payload.get("id")
        is_notification = "id" not in payload

        try:
            result = await self._dispatch(payload["method"], payload.get("params") or {}, headers)
        except JsonRpcError as e:
            return None if is_notification else _response(request_id, error=e)
        except Exception as e:
            logger.exception("Gateway method %s failed", payload["method"])
            return None if is_notification else _response(
                request_id, error=JsonRpcError(INTERNAL_ERROR, str(e) or "Internal error")
            )
        return None if is_notification else _response(request_id, result)

    async def _dispatch(self, method: str, params: dict, headers: dict[str, str] | None) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            }
        if method in ("initialized", "notifications/initialized", "ping"):
            return {}
        if method in ("tools/list", "tools/call") and not self.authorize(headers):
            raise JsonRpcError(UNAUTHORIZED, "Unauthorized")
        if method == "tools/list":
            return {"tools": await self.list_tools_async()}
        if method == "tools/call":
            if not isinstance(params, dict) or not isinstance(params.get("name"), str):
                raise JsonRpcError(INVALID_PARAMS, "tools/call requires a string 'name'")
            arguments = params.get("arguments") or {}
            if not isinstance(arguments, dict):
                raise JsonRpcError(INVALID_PARAMS, "'arguments' must be an object")
            lowered = {k.lower(): v for k, v in (headers or {}).items()}
            return await self.call_tool_async(params["name"], arguments, lowered.get("x-api-key"))
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    # ------------------------------------------------------------------
    # REST fallback
    # ------------------------------------------------------------------

    async def handle_rest_async(
        self,
        method: str,
        path: str,
        body: dict | list | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict | list]:
        """Serve the REST routes; returns ``(status, json body)``."""
        method = method.upper()
        if method == "GET" and path == "/health":
            return 200, {"ok": True}
        if path not in ("/tools/list", "/tools/call", "/mcp"):
            return 404, {"error": f"Not found: {path}"}

        # JSON-RPC checks the key per method
        if method == "POST" and path == "/mcp":
            reply = await self.handle_async({} if body is None else body, headers)
            return (202, {}) if reply is None else (200, reply)
        if not self.authorize(headers):
            return 401, {"error": "Unauthorized"}
        if method == "GET" and path == "/tools/list":
            return 200, {"tools": await self.list_tools_async()}
        if method == "POST" and path == "/tools/call":
            body = body or {}
            try:
                lowered = {k.lower(): v for k, v in (headers or {}).items()}
                result = await self.call_tool_async(
                    str(body.get("name", "")), body.get("arguments") or {}, lowered.get("x-api-key")
                )
            except JsonRpcError as e:
                status = 429 if e.code == RATE_LIMITED else 400 if e.code == INVALID_PARAMS else 502
                return status, {"error": e.message}
            return 200, result
        return 405, {"error": f"Method not allowed: {method} {path}"}


# ----------------------------------------------------------------------
# stdio transport
# ----------------------------------------------------------------------


def build_mcp_server(gateway: ToolGateway, api_key: str | None = None) -> Server:
    """Expose the gateway as an ``mcp`` SDK server."""
    app = Server(SERVER_NAME)

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        return [
            Tool(name=t["name"], description=t["description"], inputSchema=t["inputSchema"])
            for t in await gateway.list_tools_async()
        ]

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        try:
            result = await gateway.call_tool_async(name, arguments, api_key)
        except JsonRpcError as e:
            return [TextContent(type="text", text=json.dumps({"error": e.message}))]
        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    return app


async def serve_stdio(gateway: ToolGateway, api_key: str | None = None) -> None:
    """Run the gateway as an MCP server over stdio."""
    app = build_mcp_server(gateway, api_key)
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())
