"""
Kafka-Ops-MCP Server

MCP server exposing Kafka topic lifecycle, cluster and consumer-group
introspection, record production and bounded consumption as tools for AI
hosts. Broker access goes through confluent-kafka; the MCP side is served
by FastMCP over SSE (default) or stdio.

Broker connection settings come from the environment (KAFKA_*), see
kafka_ops_mcp.config.
"""

import argparse
import atexit
import logging
from typing import List, Optional

import uvicorn

from kafka_ops_mcp.config import Settings, get_settings
from kafka_ops_mcp.gateway import BrokerGateway
from kafka_ops_mcp.logging_setup import configure_logging
from kafka_ops_mcp.tools import build_registry
from kafka_ops_mcp.transport import SSE_PATH, build_app, build_server

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kafka-ops-mcp",
        description="Serve Kafka operations as MCP tools",
    )
    parser.add_argument("--transport", choices=["sse", "stdio"], default=None,
                        help="MCP transport (default: MCP_TRANSPORT or sse)")
    parser.add_argument("--host", default=None, help="Bind address for SSE")
    parser.add_argument("--port", type=int, default=None, help="Bind port for SSE")
    parser.add_argument("--log-level", default=None, help="Root log level")
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Command-line flags win over environment settings."""
    overrides = {
        "mcp_transport": args.transport,
        "mcp_host": args.host,
        "mcp_port": args.port,
        "log_level": args.log_level,
    }
    update = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=update) if update else settings


# =====================================================================
#  ENTRY POINT
# =====================================================================

def main(argv: Optional[List[str]] = None):
    """Start the Kafka-Ops-MCP server."""
    settings = apply_overrides(get_settings(), parse_args(argv))
    configure_logging(settings.log_level)

    gateway = BrokerGateway.from_settings(settings)
    atexit.register(gateway.close)

    registry = build_registry(gateway)
    mcp = build_server(registry, settings)

    if settings.mcp_transport == "stdio":
        logger.info("Serving %d tools over stdio", len(registry))
        mcp.run(transport="stdio")
        return

    logger.info(
        "Serving %d tools over SSE at http://%s:%d%s (brokers: %s)",
        len(registry), settings.mcp_host, settings.mcp_port, SSE_PATH,
        settings.kafka_bootstrap_servers,
    )
    uvicorn.run(build_app(mcp, settings), host=settings.mcp_host, port=settings.mcp_port)


if __name__ == "__main__":
    main()
