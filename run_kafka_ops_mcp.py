#!/usr/bin/env python3
"""
Kafka-Ops-MCP Server Entry Point

Serves Kafka admin and data-plane operations as MCP tools, backed by
confluent-kafka.

Run this script to start the MCP server (SSE on port 8080 by default):
    KAFKA_BOOTSTRAP_SERVERS=localhost:9092 python run_kafka_ops_mcp.py

Or configure in .cursor/mcp.json for stdio:
    {
        "mcpServers": {
            "kafka-ops-mcp": {
                "command": "python",
                "args": ["run_kafka_ops_mcp.py", "--transport", "stdio"],
                "cwd": "${workspaceFolder}"
            }
        }
    }
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from kafka_ops_mcp.server import main

if __name__ == "__main__":
    main()
