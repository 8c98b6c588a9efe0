from kafka_ops_mcp.models import (
    ConsumerGroupInfo,
    KafkaMessage,
    MemberInfo,
    ProduceResult,
    TopicPartitionAssignment,
)


def test_produce_success_omits_error_message():
    result = ProduceResult(topic="t1", partition=0, offset=0, timestamp=10, success=True)

    assert result.to_dict() == {
        "topic": "t1", "partition": 0, "offset": 0, "timestamp": 10, "success": True,
    }


def test_produce_failure():
    data = ProduceResult.failed("t1", "Local: Message timed out").to_dict()

    assert data == {
        "topic": "t1",
        "partition": None,
        "offset": None,
        "timestamp": None,
        "success": False,
        "errorMessage": "Local: Message timed out",
    }


def test_null_and_empty_are_distinct():
    message = KafkaMessage(topic="t1", partition=0, offset=1, key=None, value="", timestamp=0)

    data = message.to_dict()

    assert data["key"] is None
    assert data["value"] == ""
    assert data["headers"] == {}


def test_group_keys_are_camel_case():
    group = ConsumerGroupInfo(
        group_id="g1",
        state="STABLE",
        members=[MemberInfo(
            member_id="m1", client_id="c1", host="/10.0.0.1",
            assignments=[TopicPartitionAssignment(topic="t1", partitions=[0])],
        )],
    )

    data = group.to_dict()

    assert data["groupId"] == "g1"
    assert data["partitionAssignor"] is None
    assert data["members"][0]["memberId"] == "m1"
    assert data["members"][0]["clientId"] == "c1"
