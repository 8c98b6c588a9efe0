"""
Tool Surface

The catalogue of Kafka tools exposed to MCP hosts. Every tool is an entry
in an explicit, ordered ToolRegistry: a stable name, a description the AI
host reads to decide when to call it, parameter descriptors, and a handler
with the uniform shape ``(**arguments) -> JSON string``.

Handlers never raise. Any error from the gateway (or from argument
parsing) is caught at this boundary and rendered as
``{"success": false, "error": "..."}``.
"""

import functools
import inspect
import json
import logging
from dataclasses import dataclass
from typing import (
    Annotated, Any, Callable, Dict, Iterator, List, Optional, Union,
    get_args, get_origin,
)

from pydantic import Field
from pydantic.fields import FieldInfo

from kafka_ops_mcp.errors import BadArgumentError, KafkaToolError
from kafka_ops_mcp.gateway import BrokerGateway

logger = logging.getLogger(__name__)

DEFAULT_PARTITIONS = 1
DEFAULT_REPLICATION_FACTOR = 1
DEFAULT_MAX_MESSAGES = 10
DEFAULT_FROM_BEGINNING = True
DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_PEEK_COUNT = 5


# =====================================================================
#  JSON rendering
# =====================================================================

def to_json(obj, indent=2) -> str:
    """Format object as pretty-printed JSON."""
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    return json.dumps(obj, indent=indent, default=_json_default)


def _json_default(obj):
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return str(obj)


def error_response(message: str) -> str:
    return to_json({"success": False, "error": message})


# =====================================================================
#  Registry
# =====================================================================

@dataclass
class ToolParameter:
    name: str
    description: str
    type: str
    required: bool
    default: Any = None


@dataclass
class Tool:
    name: str
    description: str
    parameters: List[ToolParameter]
    handler: Callable[..., str]

    def __call__(self, **arguments) -> str:
        return self.handler(**arguments)


class ToolRegistry:
    """Ordered mapping of tool name -> Tool."""

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def tool(self, name: str, description: str, failure: str):
        """Register a handler under ``name``.

        ``failure`` is the error prefix, formatted with the call's
        arguments, e.g. "Failed to describe topic '{topicName}'".
        """
        def decorator(fn: Callable[..., str]) -> Callable[..., str]:
            if name in self._tools:
                raise ValueError(f"Tool '{name}' is already registered")
            handler = _guarded(fn, failure)
            params = [
                _describe_parameter(p) for p in inspect.signature(fn).parameters.values()
            ]
            self._tools[name] = Tool(name, description, params, handler)
            return handler
        return decorator

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(f"Tool '{name}' not found. Available: {list(self._tools)}")
        return tool

    def call(self, name: str, **arguments) -> str:
        """Dispatch by name; an unknown name is reported as a JSON error."""
        try:
            tool = self.get(name)
        except KeyError as e:
            return error_response(str(e.args[0]))
        return tool(**arguments)

    def names(self) -> List[str]:
        return list(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


def _guarded(fn: Callable[..., str], failure: str) -> Callable[..., str]:
    """Wrap a handler so that it always returns JSON and never raises."""
    signature = inspect.signature(fn)

    @functools.wraps(fn)
    def handler(**arguments) -> str:
        try:
            bound = signature.bind(**arguments)
        except TypeError as e:
            logger.warning("Rejected call to %s: %s", fn.__name__, e)
            return error_response(f"Invalid arguments: {e}")
        bound.apply_defaults()
        prefix = failure.format(**bound.arguments)
        try:
            return fn(*bound.args, **bound.kwargs)
        except BadArgumentError as e:
            logger.warning("%s: %s", prefix, e)
            return error_response(f"{prefix}: {e}")
        except KafkaToolError as e:
            logger.error("%s: [%s] %s", prefix, e.kind, e)
            return error_response(f"{prefix}: {e}")
        except Exception as e:
            logger.exception(prefix)
            return error_response(f"{prefix}: {e}")

    return handler


def _describe_parameter(param: inspect.Parameter) -> ToolParameter:
    annotation = param.annotation
    description = ""
    if get_origin(annotation) is Annotated:
        annotation, *extras = get_args(annotation)
        for extra in extras:
            if isinstance(extra, FieldInfo) and extra.description:
                description = extra.description
    required = param.default is inspect.Parameter.empty
    return ToolParameter(
        name=param.name,
        description=description,
        type=_type_name(annotation),
        required=required,
        default=None if required else param.default,
    )


def _type_name(annotation) -> str:
    origin = get_origin(annotation)
    if origin is Union:
        members = [a for a in get_args(annotation) if a is not type(None)]
        return " | ".join(_type_name(a) for a in members)
    if origin is not None:
        return getattr(origin, "__name__", str(origin))
    return getattr(annotation, "__name__", str(annotation))


# =====================================================================
#  Argument helpers
# =====================================================================

def _default(value, fallback):
    return fallback if value is None else value


def _require_name(value: str, label: str) -> str:
    if value is None or not str(value).strip():
        raise BadArgumentError(f"{label} must not be blank")
    return value


def parse_headers(headers: Union[str, Dict[str, Any], None]) -> Optional[Dict[str, Optional[str]]]:
    """Parse produce headers given as a JSON object or a JSON string.

    Absent or blank input means no headers. Values must be strings or null.
    """
    if headers is None:
        return None
    if isinstance(headers, str):
        if not headers.strip():
            return None
        try:
            headers = json.loads(headers)
        except json.JSONDecodeError as e:
            raise BadArgumentError(f"Invalid JSON for headers: {e}") from e
    if not isinstance(headers, dict):
        raise BadArgumentError('headers must be a JSON object, e.g. {"header1": "value1"}')
    parsed: Dict[str, Optional[str]] = {}
    for name, value in headers.items():
        if value is not None and not isinstance(value, str):
            raise BadArgumentError(f"header '{name}' must be a string or null")
        parsed[str(name)] = value
    return parsed or None


# =====================================================================
#  Catalogue
# =====================================================================

def build_registry(gateway: BrokerGateway) -> ToolRegistry:
    """Build the Kafka tool catalogue bound to ``gateway``."""
    registry = ToolRegistry()

    # ---------- Topic management ----------

    @registry.tool(
        "listTopics",
        "List all Kafka topics in the cluster. Returns a list of topic names.",
        failure="Failed to list topics",
    )
    def list_topics() -> str:
        topics = gateway.list_topics()
        return to_json({"topics": topics, "count": len(topics)})

    @registry.tool(
        "describeTopic",
        "Get detailed information about a specific Kafka topic including "
        "partitions, replicas, and configurations.",
        failure="Failed to describe topic '{topicName}'",
    )
    def describe_topic(
        topicName: Annotated[str, Field(description="The name of the topic to describe")],
    ) -> str:
        _require_name(topicName, "topicName")
        return to_json(gateway.describe_topic(topicName))

    @registry.tool(
        "createTopic",
        "Create a new Kafka topic with the specified configuration.",
        failure="Failed to create topic '{topicName}'",
    )
    def create_topic(
        topicName: Annotated[str, Field(description="The name of the topic to create")],
        partitions: Annotated[Optional[int], Field(
            description="Number of partitions for the topic (default: 1)")] = None,
        replicationFactor: Annotated[Optional[int], Field(
            description="Replication factor for the topic (default: 1)")] = None,
    ) -> str:
        _require_name(topicName, "topicName")
        message = gateway.create_topic(
            topicName,
            _default(partitions, DEFAULT_PARTITIONS),
            _default(replicationFactor, DEFAULT_REPLICATION_FACTOR),
        )
        return to_json({"success": True, "message": message})

    @registry.tool(
        "deleteTopic",
        "Delete a Kafka topic. WARNING: This operation is irreversible and "
        "will delete all messages in the topic.",
        failure="Failed to delete topic '{topicName}'",
    )
    def delete_topic(
        topicName: Annotated[str, Field(description="The name of the topic to delete")],
    ) -> str:
        _require_name(topicName, "topicName")
        return to_json({"success": True, "message": gateway.delete_topic(topicName)})

    # ---------- Message production ----------

    @registry.tool(
        "produceMessage",
        "Send a message to a Kafka topic. Returns the partition and offset "
        "where the message was written.",
        failure="Failed to produce message",
    )
    def produce_message(
        topicName: Annotated[str, Field(description="The topic to send the message to")],
        message: Annotated[str, Field(description="The message value/payload to send")],
        key: Annotated[Optional[str], Field(
            description="Optional message key for partitioning")] = None,
        headers: Annotated[Optional[Union[str, Dict[str, Optional[str]]]], Field(
            description='Optional headers as JSON object (e.g., {"header1": "value1"})')] = None,
    ) -> str:
        _require_name(topicName, "topicName")
        result = gateway.produce_message(topicName, key, message, parse_headers(headers))
        return to_json(result)

    # ---------- Message consumption ----------

    @registry.tool(
        "consumeMessages",
        "Consume messages from a Kafka topic. Creates a temporary consumer "
        "group to read messages.",
        failure="Failed to consume messages",
    )
    def consume_messages(
        topicName: Annotated[str, Field(description="The topic to consume messages from")],
        maxMessages: Annotated[Optional[int], Field(
            description="Maximum number of messages to consume (default: 10)")] = None,
        fromBeginning: Annotated[Optional[bool], Field(
            description="Whether to read from the beginning of the topic (default: true)")] = None,
        timeoutSeconds: Annotated[Optional[float], Field(
            description="Timeout in seconds to wait for messages (default: 10)")] = None,
    ) -> str:
        _require_name(topicName, "topicName")
        messages = gateway.consume_messages(
            topicName,
            _default(maxMessages, DEFAULT_MAX_MESSAGES),
            _default(fromBeginning, DEFAULT_FROM_BEGINNING),
            _default(timeoutSeconds, DEFAULT_TIMEOUT_SECONDS),
        )
        return to_json({
            "topic": topicName,
            "messagesReturned": len(messages),
            "messages": [m.to_dict() for m in messages],
        })

    @registry.tool(
        "peekMessages",
        "Peek at messages from a specific partition and offset without "
        "committing. Useful for inspecting messages at a known location.",
        failure="Failed to peek messages",
    )
    def peek_messages(
        topicName: Annotated[str, Field(description="The topic to peek messages from")],
        partition: Annotated[int, Field(description="The partition number to read from")],
        offset: Annotated[int, Field(description="The offset to start reading from")],
        count: Annotated[Optional[int], Field(
            description="Number of messages to read (default: 5)")] = None,
    ) -> str:
        _require_name(topicName, "topicName")
        messages = gateway.peek_messages(
            topicName, partition, offset, _default(count, DEFAULT_PEEK_COUNT)
        )
        return to_json({
            "topic": topicName,
            "partition": partition,
            "startOffset": offset,
            "messagesReturned": len(messages),
            "messages": [m.to_dict() for m in messages],
        })

    # ---------- Consumer groups ----------

    @registry.tool(
        "listConsumerGroups",
        "List all consumer groups in the Kafka cluster.",
        failure="Failed to list consumer groups",
    )
    def list_consumer_groups() -> str:
        groups = gateway.list_consumer_groups()
        return to_json({"consumerGroups": groups, "count": len(groups)})

    @registry.tool(
        "describeConsumerGroup",
        "Get detailed information about a consumer group including members "
        "and their partition assignments.",
        failure="Failed to describe consumer group '{groupId}'",
    )
    def describe_consumer_group(
        groupId: Annotated[str, Field(description="The consumer group ID to describe")],
    ) -> str:
        _require_name(groupId, "groupId")
        return to_json(gateway.describe_consumer_group(groupId))

    # ---------- Cluster ----------

    @registry.tool(
        "describeCluster",
        "Get information about the Kafka cluster including broker details "
        "and controller.",
        failure="Failed to describe cluster",
    )
    def describe_cluster() -> str:
        return to_json(gateway.describe_cluster())

    return registry
