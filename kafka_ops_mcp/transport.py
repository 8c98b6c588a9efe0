"""
MCP Transport Adapter

Wires the tool registry into a FastMCP server and exposes it over SSE:

  GET  /mcp/sse       server -> host event stream
  POST /mcp/message   host -> server JSON-RPC messages

Some MCP hosts reject a 200 OK on the message endpoint and only accept
202 Accepted. AcceptedStatusMiddleware rewrites that one status on that
one method and path; every other response passes through untouched. It is
gated by MCP_ACCEPTED_STATUS_REWRITE and by the path it is given, so a
host that does not need it can opt out.
"""

import functools
import logging

import anyio
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.tools import Tool as MCPTool
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from kafka_ops_mcp.config import Settings
from kafka_ops_mcp.tools import Tool, ToolRegistry, error_response

logger = logging.getLogger(__name__)

SSE_PATH = "/mcp/sse"
MESSAGE_PATH = "/mcp/message"

INSTRUCTIONS = (
    "Kafka-Ops-MCP exposes administrative and data-plane operations on a "
    "Kafka cluster. Explore with listTopics/describeTopic/describeCluster, "
    "inspect groups with listConsumerGroups/describeConsumerGroup, write with "
    "produceMessage and read with consumeMessages (temporary group, no commits) "
    "or peekMessages (exact partition and offset). Every tool returns JSON; "
    'failures come back as {"success": false, "error": ...}.'
)


class AcceptedStatusMiddleware:
    """Rewrite a 200 response to 202 for ``POST <path>``.

    The path comparison ignores a trailing slash, since the SSE transport
    advertises the message endpoint as ``/mcp/message/?session_id=...``.
    Request bodies and response headers are never modified.
    """

    def __init__(self, app: ASGIApp, path: str = MESSAGE_PATH):
        self.app = app
        self.path = path.rstrip("/")

    def matches(self, scope: Scope) -> bool:
        return (
            scope["type"] == "http"
            and scope.get("method") == "POST"
            and scope.get("path", "").rstrip("/") == self.path
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self.matches(scope):
            await self.app(scope, receive, send)
            return

        async def send_accepted(message: Message) -> None:
            if message["type"] == "http.response.start" and message["status"] == 200:
                message = {**message, "status": 202}
            await send(message)

        await self.app(scope, receive, send_accepted)


class EnvelopedTool(MCPTool):
    """FastMCP tool whose argument validation failures come back as the
    JSON error envelope instead of a ToolError.

    The input schema is still derived from the handler's annotated
    signature; only the failure rendering changes.
    """

    async def run(self, arguments, context=None, convert_result=False):
        try:
            self.fn_metadata.arg_model.model_validate(
                self.fn_metadata.pre_parse_json(arguments)
            )
        except ValidationError as e:
            logger.warning("Rejected call to %s: %s", self.name, e)
            result = error_response(f"Invalid arguments: {_summarize(e)}")
            return self.fn_metadata.convert_result(result) if convert_result else result
        return await super().run(arguments, context=context, convert_result=convert_result)


def _summarize(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    )


def _threaded(tool: Tool):
    """Async shim running a blocking tool handler on a worker thread.

    Keeps the handler's signature (via __wrapped__) so FastMCP derives the
    same parameter schema.
    """
    @functools.wraps(tool.handler)
    async def run(**arguments) -> str:
        return await anyio.to_thread.run_sync(functools.partial(tool.handler, **arguments))

    return run


def build_server(registry: ToolRegistry, settings: Settings) -> FastMCP:
    """Create the FastMCP server and register every tool of ``registry``."""
    tools = []
    for tool in registry:
        tools.append(EnvelopedTool.from_function(
            _threaded(tool), name=tool.name, description=tool.description
        ))
        logger.debug("Registered tool %s", tool.name)
    mcp = FastMCP(
        "Kafka-Ops-MCP",
        instructions=INSTRUCTIONS,
        tools=tools,
        host=settings.mcp_host,
        port=settings.mcp_port,
        sse_path=SSE_PATH,
        message_path=MESSAGE_PATH + "/",
    )
    logger.info("Registered %d tools", len(registry))
    return mcp


def build_app(mcp: FastMCP, settings: Settings) -> Starlette:
    """Return the SSE ASGI app, with the status rewrite when enabled."""
    app = mcp.sse_app()
    if settings.mcp_accepted_status_rewrite:
        app.add_middleware(AcceptedStatusMiddleware, path=MESSAGE_PATH)
    else:
        logger.info("202 status rewrite on %s disabled", MESSAGE_PATH)
    return app
