import json
from unittest.mock import MagicMock

import pytest

from kafka_ops_mcp.errors import (
    BadArgumentError,
    BrokerUnavailableError,
    OffsetOutOfRangeError,
    TopicExistsError,
    UnknownGroupError,
)
from kafka_ops_mcp.gateway import BrokerGateway
from kafka_ops_mcp.models import (
    BrokerInfo,
    ClusterInfo,
    KafkaMessage,
    PartitionInfo,
    ProduceResult,
    TopicInfo,
)
from kafka_ops_mcp.tools import ToolRegistry, build_registry, parse_headers

CATALOGUE = [
    "listTopics",
    "describeTopic",
    "createTopic",
    "deleteTopic",
    "produceMessage",
    "consumeMessages",
    "peekMessages",
    "listConsumerGroups",
    "describeConsumerGroup",
    "describeCluster",
]

MINIMAL_ARGS = {
    "listTopics": {},
    "describeTopic": {"topicName": "t1"},
    "createTopic": {"topicName": "t1"},
    "deleteTopic": {"topicName": "t1"},
    "produceMessage": {"topicName": "t1", "message": "hi"},
    "consumeMessages": {"topicName": "t1"},
    "peekMessages": {"topicName": "t1", "partition": 0, "offset": 0},
    "listConsumerGroups": {},
    "describeConsumerGroup": {"groupId": "g1"},
    "describeCluster": {},
}


@pytest.fixture
def gateway():
    return MagicMock(spec=BrokerGateway)


@pytest.fixture
def registry(gateway):
    return build_registry(gateway)


def call(registry, name, **arguments):
    return json.loads(registry.call(name, **arguments))


def message(offset, value="v"):
    return KafkaMessage(topic="t1", partition=0, offset=offset, value=value,
                        timestamp=1700000000000)


class TestCatalogue:
    def test_tool_names_and_order(self, registry):
        assert registry.names() == CATALOGUE
        assert len(registry) == 10
        assert "peekMessages" in registry

    def test_every_tool_is_described(self, registry):
        for tool in registry:
            assert tool.description
            for param in tool.parameters:
                assert param.description, f"{tool.name}.{param.name}"

    def test_create_topic_parameters(self, registry):
        params = {p.name: p for p in registry.get("createTopic").parameters}

        assert list(params) == ["topicName", "partitions", "replicationFactor"]
        assert params["topicName"].required
        assert params["topicName"].type == "str"
        assert not params["partitions"].required
        assert params["partitions"].type == "int"

    def test_duplicate_registration_rejected(self):
        registry = ToolRegistry()

        @registry.tool("ping", "Ping", failure="Failed to ping")
        def ping() -> str:
            return "{}"

        with pytest.raises(ValueError):
            registry.tool("ping", "Ping again", failure="Failed")(ping)

    def test_unknown_tool(self, registry):
        result = call(registry, "compactTopic")

        assert result["success"] is False
        assert "compactTopic" in result["error"]


class TestTopicTools:
    def test_list_topics(self, registry, gateway):
        gateway.list_topics.return_value = ["a", "b"]

        assert call(registry, "listTopics") == {"topics": ["a", "b"], "count": 2}

    def test_output_is_pretty_printed(self, registry, gateway):
        gateway.list_topics.return_value = []

        assert registry.call("listTopics") == '{\n  "topics": [],\n  "count": 0\n}'

    def test_describe_topic(self, registry, gateway):
        gateway.describe_topic.return_value = TopicInfo(
            name="t1",
            partition_count=1,
            partitions=[PartitionInfo(partition=0, leader=1, replicas=[1], in_sync_replicas=[1])],
            configs={"retention.ms": "1000"},
        )

        result = call(registry, "describeTopic", topicName="t1")

        assert result["partitionCount"] == 1
        assert result["partitions"][0]["inSyncReplicas"] == [1]
        assert result["configs"] == {"retention.ms": "1000"}

    def test_create_topic_defaults(self, registry, gateway):
        gateway.create_topic.return_value = "created"

        result = call(registry, "createTopic", topicName="orders")

        gateway.create_topic.assert_called_once_with("orders", 1, 1)
        assert result == {"success": True, "message": "created"}

    def test_create_topic_explicit(self, registry, gateway):
        gateway.create_topic.return_value = "created"

        call(registry, "createTopic", topicName="orders", partitions=6, replicationFactor=3)

        gateway.create_topic.assert_called_once_with("orders", 6, 3)

    def test_create_existing_topic(self, registry, gateway):
        gateway.create_topic.side_effect = TopicExistsError("topic 'dup': Topic 'dup' already exists.")

        result = call(registry, "createTopic", topicName="dup")

        assert result["success"] is False
        assert result["error"].startswith("Failed to create topic 'dup': ")

    def test_blank_topic_name(self, registry, gateway):
        result = call(registry, "deleteTopic", topicName="  ")

        assert result["success"] is False
        gateway.delete_topic.assert_not_called()

    def test_delete_topic(self, registry, gateway):
        gateway.delete_topic.return_value = "Topic 'orders' deleted successfully"

        result = call(registry, "deleteTopic", topicName="orders")

        assert result == {"success": True, "message": "Topic 'orders' deleted successfully"}


class TestProduceTool:
    def test_headers_as_json_string(self, registry, gateway):
        gateway.produce_message.return_value = ProduceResult(
            topic="t1", partition=0, offset=5, timestamp=1, success=True
        )

        result = call(registry, "produceMessage", topicName="t1", message="hello",
                      key="k1", headers='{"h": "v"}')

        gateway.produce_message.assert_called_once_with("t1", "k1", "hello", {"h": "v"})
        assert result == {"topic": "t1", "partition": 0, "offset": 5, "timestamp": 1,
                          "success": True}

    def test_headers_as_object(self, registry, gateway):
        gateway.produce_message.return_value = ProduceResult(topic="t1", success=True)

        call(registry, "produceMessage", topicName="t1", message="m", headers={"a": "1"})

        gateway.produce_message.assert_called_once_with("t1", None, "m", {"a": "1"})

    def test_invalid_headers_json(self, registry, gateway):
        result = call(registry, "produceMessage", topicName="t1", message="m", headers="{oops")

        assert result["success"] is False
        assert "Invalid JSON for headers" in result["error"]
        gateway.produce_message.assert_not_called()

    def test_failed_delivery_is_reported(self, registry, gateway):
        gateway.produce_message.return_value = ProduceResult.failed("t1", "Broker: Message size too large")

        result = call(registry, "produceMessage", topicName="t1", message="m")

        assert result["success"] is False
        assert result["errorMessage"] == "Broker: Message size too large"
        assert result["partition"] is None

    def test_missing_message(self, registry, gateway):
        result = call(registry, "produceMessage", topicName="t1")

        assert result["success"] is False
        assert result["error"].startswith("Invalid arguments")
        gateway.produce_message.assert_not_called()


class TestConsumeTools:
    def test_consume_defaults(self, registry, gateway):
        gateway.consume_messages.return_value = [message(0), message(1)]

        result = call(registry, "consumeMessages", topicName="t1")

        gateway.consume_messages.assert_called_once_with("t1", 10, True, 10)
        assert result["topic"] == "t1"
        assert result["messagesReturned"] == 2
        assert [m["offset"] for m in result["messages"]] == [0, 1]

    def test_consume_explicit(self, registry, gateway):
        gateway.consume_messages.return_value = []

        result = call(registry, "consumeMessages", topicName="t1", maxMessages=3,
                      fromBeginning=False, timeoutSeconds=2.5)

        gateway.consume_messages.assert_called_once_with("t1", 3, False, 2.5)
        assert result == {"topic": "t1", "messagesReturned": 0, "messages": []}

    def test_peek(self, registry, gateway):
        gateway.peek_messages.return_value = [message(7, value=None)]

        result = call(registry, "peekMessages", topicName="t1", partition=0, offset=7)

        gateway.peek_messages.assert_called_once_with("t1", 0, 7, 5)
        assert result["partition"] == 0
        assert result["startOffset"] == 7
        assert result["messagesReturned"] == 1
        assert result["messages"][0]["value"] is None

    def test_peek_out_of_range(self, registry, gateway):
        gateway.peek_messages.side_effect = OffsetOutOfRangeError(
            "topic 't1' partition 0 offset 99: offset out of range"
        )

        result = call(registry, "peekMessages", topicName="t1", partition=0, offset=99)

        assert result["success"] is False
        assert result["error"].startswith("Failed to peek messages: ")


class TestGroupAndClusterTools:
    def test_list_consumer_groups(self, registry, gateway):
        gateway.list_consumer_groups.return_value = ["g1"]

        assert call(registry, "listConsumerGroups") == {"consumerGroups": ["g1"], "count": 1}

    def test_unknown_group(self, registry, gateway):
        gateway.describe_consumer_group.side_effect = UnknownGroupError(
            "consumer group 'nope': does not exist"
        )

        result = call(registry, "describeConsumerGroup", groupId="nope")

        assert result["error"].startswith("Failed to describe consumer group 'nope': ")

    def test_describe_cluster(self, registry, gateway):
        broker = BrokerInfo(id=1, host="b1", port=9092)
        gateway.describe_cluster.return_value = ClusterInfo(
            cluster_id="c1", controller=broker, brokers=[broker]
        )

        result = call(registry, "describeCluster")

        assert result["clusterId"] == "c1"
        assert result["controller"]["id"] == 1


class TestErrorEnvelope:
    @pytest.mark.parametrize("name", CATALOGUE)
    def test_broker_down_never_raises(self, registry, gateway, name):
        for method in ("list_topics", "describe_topic", "create_topic", "delete_topic",
                       "consume_messages", "peek_messages", "list_consumer_groups",
                       "describe_consumer_group", "describe_cluster"):
            getattr(gateway, method).side_effect = BrokerUnavailableError("Local: All broker connections are down")
        gateway.produce_message.return_value = ProduceResult.failed("t1", "Local: All broker connections are down")

        result = call(registry, name, **MINIMAL_ARGS[name])

        assert result["success"] is False

    def test_unexpected_exception(self, registry, gateway):
        gateway.list_topics.side_effect = RuntimeError("boom")

        result = call(registry, "listTopics")

        assert result == {"success": False, "error": "Failed to list topics: boom"}


class TestParseHeaders:
    @pytest.mark.parametrize("raw", [None, "", "   ", "{}", {}])
    def test_empty(self, raw):
        assert parse_headers(raw) is None

    def test_null_value_kept(self):
        assert parse_headers('{"a": null, "b": "x"}') == {"a": None, "b": "x"}

    def test_non_object(self):
        with pytest.raises(BadArgumentError):
            parse_headers('["a"]')

    def test_non_string_value(self):
        with pytest.raises(BadArgumentError) as excinfo:
            parse_headers('{"n": 1}')
        assert "'n'" in str(excinfo.value)
