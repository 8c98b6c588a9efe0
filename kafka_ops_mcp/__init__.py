"""Kafka operations exposed as Model Context Protocol tools."""

__version__ = "0.1.0"
