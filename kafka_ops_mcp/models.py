"""
Result Model

Value shapes returned by the broker gateway. They are built per request,
serialized once by the tool surface, and discarded. Field names go out on
the wire in camelCase.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Dump with wire (camelCase) field names."""
        return self.model_dump(by_alias=True, mode="json")


# =========================================================================
#  Topics
# =========================================================================

class PartitionInfo(_Record):
    partition: int
    leader: int = -1
    replicas: List[int] = Field(default_factory=list)
    in_sync_replicas: List[int] = Field(default_factory=list)


class TopicInfo(_Record):
    """Topic description; ``configs`` holds only non-default entries."""

    name: str
    partition_count: int
    partitions: List[PartitionInfo] = Field(default_factory=list)
    configs: Dict[str, Optional[str]] = Field(default_factory=dict)


# =========================================================================
#  Messages
# =========================================================================

class KafkaMessage(_Record):
    topic: str
    partition: int
    offset: int
    key: Optional[str] = None
    value: Optional[str] = None
    timestamp: int
    headers: Dict[str, Optional[str]] = Field(default_factory=dict)


class ProduceResult(_Record):
    """Outcome of a single produce.

    ``errorMessage`` is only emitted when the send failed; partition,
    offset and timestamp are null in that case.
    """

    topic: str
    partition: Optional[int] = None
    offset: Optional[int] = None
    timestamp: Optional[int] = None
    success: bool
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.success:
            data.pop("errorMessage", None)
        return data

    @classmethod
    def failed(cls, topic: str, error: str) -> "ProduceResult":
        return cls(topic=topic, success=False, error_message=error)


# =========================================================================
#  Consumer groups
# =========================================================================

class TopicPartitionAssignment(_Record):
    topic: str
    partitions: List[int] = Field(default_factory=list)


class MemberInfo(_Record):
    member_id: str
    client_id: str
    host: str
    assignments: List[TopicPartitionAssignment] = Field(default_factory=list)


class ConsumerGroupInfo(_Record):
    group_id: str
    state: str
    coordinator: Optional[str] = None
    partition_assignor: Optional[str] = None
    members: List[MemberInfo] = Field(default_factory=list)


# =========================================================================
#  Cluster
# =========================================================================

class BrokerInfo(_Record):
    id: int
    host: str
    port: int
    rack: Optional[str] = None


class ClusterInfo(_Record):
    cluster_id: Optional[str] = None
    controller: BrokerInfo
    brokers: List[BrokerInfo] = Field(default_factory=list)
