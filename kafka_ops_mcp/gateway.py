"""
Broker Gateway

Stateless facade over the confluent-kafka clients used by the MCP tools:

  - a shared AdminClient (topics, configs, groups, cluster metadata),
  - a shared Producer (keys, values and headers sent as UTF-8),
  - short-lived Consumers for consume/peek, each with a throwaway group id
    so no real consumer group is ever joined or committed to.

Every operation either returns a result model or raises a KafkaToolError.
The single exception is produce_message, which reports failures inside
the returned ProduceResult.
"""

import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from confluent_kafka import (
    Consumer, KafkaError, KafkaException, Producer,
    TopicCollection, TopicPartition,
)
from confluent_kafka.admin import AdminClient, ConfigResource, NewTopic, ResourceType

from kafka_ops_mcp.config import Settings, build_client_config
from kafka_ops_mcp.errors import (
    BadArgumentError,
    BrokerUnavailableError,
    InvalidPartitionCountError,
    InvalidReplicationError,
    KafkaToolError,
    NoControllerError,
    SerializationError,
    UnknownGroupError,
    UnknownTopicError,
    translate_kafka_error,
    translate_kafka_exception,
)
from kafka_ops_mcp.models import (
    BrokerInfo,
    ClusterInfo,
    ConsumerGroupInfo,
    KafkaMessage,
    MemberInfo,
    PartitionInfo,
    ProduceResult,
    TopicInfo,
    TopicPartitionAssignment,
)

logger = logging.getLogger(__name__)

CONSUME_GROUP_PREFIX = "kafka-mcp-consumer-"
PEEK_GROUP_PREFIX = "kafka-mcp-peek-"

CONSUME_POLL_INTERVAL = 0.1   # seconds, upper bound per poll
PEEK_POLL_TIMEOUT = 5.0       # seconds; an empty poll ends the peek
PRODUCE_POLL_INTERVAL = 0.1   # seconds, per producer poll while awaiting delivery

# librdkafka upper bound for Consumer.consume(num_messages=...)
MAX_CONSUME_BATCH = 1_000_000

# Consecutive BrokerUnavailable admin results before the admin client is rebuilt
ADMIN_REBUILD_THRESHOLD = 2

_MISSING_TOPIC_CODES = (KafkaError.UNKNOWN_TOPIC_OR_PART, KafkaError._UNKNOWN_TOPIC)


class BrokerGateway:
    """Owns the admin client, the producer and the consumer factory."""

    def __init__(
        self,
        config: Dict[str, Any],
        request_timeout: float = 30.0,
        produce_timeout: float = 10.0,
        admin_factory: Callable[[Dict[str, Any]], Any] = AdminClient,
        producer_factory: Callable[[Dict[str, Any]], Any] = Producer,
        consumer_factory: Callable[[Dict[str, Any]], Any] = Consumer,
    ):
        self.config = dict(config)
        self.request_timeout = request_timeout
        self.produce_timeout = produce_timeout
        self._admin_factory = admin_factory
        self._producer_factory = producer_factory
        self._consumer_factory = consumer_factory
        self._admin = None
        self._producer = None
        self._unavailable_streak = 0
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, **factories) -> "BrokerGateway":
        return cls(
            build_client_config(settings),
            request_timeout=settings.kafka_request_timeout_seconds,
            produce_timeout=settings.kafka_produce_timeout_seconds,
            **factories,
        )

    # =====================================================================
    #  Client lifecycle
    # =====================================================================

    def admin(self):
        """Get or create the shared AdminClient."""
        with self._lock:
            if self._admin is None:
                logger.info("Creating admin client for %s", self.config.get("bootstrap.servers"))
                self._admin = self._admin_factory(self.config)
            return self._admin

    def producer(self):
        """Get or create the shared Producer."""
        with self._lock:
            if self._producer is None:
                logger.info("Creating producer for %s", self.config.get("bootstrap.servers"))
                self._producer = self._producer_factory(self.config)
            return self._producer

    def new_consumer(self, group_prefix: str, auto_offset_reset: str):
        """Create an ephemeral consumer with a unique, disposable group id.

        The caller owns the consumer and must close it.
        """
        conf = dict(self.config)
        conf["group.id"] = f"{group_prefix}{uuid.uuid4()}"
        conf["auto.offset.reset"] = auto_offset_reset
        conf["enable.auto.commit"] = False
        logger.debug("Creating ephemeral consumer %s", conf["group.id"])
        return self._consumer_factory(conf)

    def close(self):
        """Flush the producer and drop the shared clients."""
        with self._lock:
            if self._producer is not None:
                try:
                    remaining = self._producer.flush(5)
                    if remaining:
                        logger.warning("%d message(s) still queued at shutdown", remaining)
                except Exception:
                    logger.exception("Producer flush failed during shutdown")
                self._producer = None
            self._admin = None

    def _admin_call(self, context: str, operation: Callable[[Any], Any]):
        """Run an admin operation, translating errors and tracking broker health."""
        admin = self.admin()
        try:
            result = operation(admin)
        except Exception as exc:
            err = translate_kafka_exception(exc, context)
            self._record_failure(err)
            if err is exc:
                raise
            raise err from exc
        self._record_success()
        return result

    def _record_success(self):
        with self._lock:
            self._unavailable_streak = 0

    def _record_failure(self, err: KafkaToolError):
        with self._lock:
            if not isinstance(err, BrokerUnavailableError):
                self._unavailable_streak = 0
                return
            self._unavailable_streak += 1
            if self._unavailable_streak >= ADMIN_REBUILD_THRESHOLD:
                logger.warning(
                    "Broker unavailable %d times in a row; admin client will be rebuilt",
                    self._unavailable_streak,
                )
                self._admin = None
                self._unavailable_streak = 0

    # =====================================================================
    #  Topics
    # =====================================================================

    def list_topics(self) -> List[str]:
        """Return all topic names visible to this client, sorted."""
        metadata = self._admin_call(
            "list topics",
            lambda admin: admin.list_topics(timeout=self.request_timeout),
        )
        return sorted(metadata.topics)

    def describe_topic(self, name: str) -> TopicInfo:
        """Describe partitions and non-default configs of one topic."""

        def _describe(admin):
            futures = admin.describe_topics(
                TopicCollection([name]), request_timeout=self.request_timeout
            )
            description = futures[name].result()
            resource = ConfigResource(ResourceType.TOPIC, name)
            config_futures = admin.describe_configs(
                [resource], request_timeout=self.request_timeout
            )
            entries = config_futures[resource].result()
            return description, entries

        description, entries = self._admin_call(f"topic '{name}'", _describe)

        partitions = [
            PartitionInfo(
                partition=p.id,
                leader=p.leader.id if p.leader is not None else -1,
                replicas=[node.id for node in p.replicas],
                in_sync_replicas=[node.id for node in p.isr],
            )
            for p in description.partitions
        ]
        configs = {
            entry_name: entry.value
            for entry_name, entry in entries.items()
            if not entry.is_default
        }
        return TopicInfo(
            name=description.name,
            partition_count=len(partitions),
            partitions=partitions,
            configs=configs,
        )

    def create_topic(self, name: str, partitions: int = 1, replication_factor: int = 1) -> str:
        if partitions < 1:
            raise InvalidPartitionCountError(
                f"topic '{name}': partition count must be at least 1, got {partitions}"
            )
        if replication_factor < 1:
            raise InvalidReplicationError(
                f"topic '{name}': replication factor must be at least 1, got {replication_factor}"
            )

        def _create(admin):
            new_topic = NewTopic(
                name, num_partitions=partitions, replication_factor=replication_factor
            )
            futures = admin.create_topics([new_topic], request_timeout=self.request_timeout)
            futures[name].result()

        self._admin_call(f"topic '{name}'", _create)
        logger.info(
            "Created topic %s (partitions=%d, replication=%d)",
            name, partitions, replication_factor,
        )
        return (
            f"Topic '{name}' created successfully with {partitions} "
            f"partition(s) and replication factor {replication_factor}"
        )

    def delete_topic(self, name: str) -> str:
        """Delete a topic; returns once the broker has accepted the request."""

        def _delete(admin):
            futures = admin.delete_topics([name], request_timeout=self.request_timeout)
            futures[name].result()

        self._admin_call(f"topic '{name}'", _delete)
        logger.info("Deleted topic %s", name)
        return f"Topic '{name}' deleted successfully"

    # =====================================================================
    #  Produce
    # =====================================================================

    def produce_message(
        self,
        topic: str,
        key: Optional[str],
        value: Optional[str],
        headers: Optional[Dict[str, Optional[str]]] = None,
    ) -> ProduceResult:
        """Send one record and wait for its delivery report.

        Never raises: failures come back as ``success=False``.
        """
        delivered = threading.Event()
        report: Dict[str, Any] = {}

        def on_delivery(err, msg):
            report["error"] = err
            report["message"] = msg
            delivered.set()

        deadline = time.monotonic() + self.produce_timeout
        try:
            producer = self.producer()
            kwargs: Dict[str, Any] = {"value": _encode(value), "on_delivery": on_delivery}
            if key is not None:
                kwargs["key"] = _encode(key)
            if headers:
                kwargs["headers"] = [(k, _encode(v)) for k, v in headers.items()]
            producer.produce(topic, **kwargs)
            while not delivered.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                producer.poll(min(PRODUCE_POLL_INTERVAL, remaining))
        except Exception as exc:
            logger.error("Failed to produce message to topic %s", topic, exc_info=True)
            return ProduceResult.failed(topic, str(translate_kafka_exception(exc)))

        if not delivered.is_set():
            logger.error("Delivery to topic %s not confirmed within %ss", topic, self.produce_timeout)
            return ProduceResult.failed(
                topic, f"Delivery not confirmed within {self.produce_timeout}s"
            )

        err = report["error"]
        if err is not None:
            logger.error("Broker rejected message for topic %s: %s", topic, err)
            return ProduceResult.failed(topic, err.str() or err.name())

        msg = report["message"]
        _, timestamp = msg.timestamp()
        return ProduceResult(
            topic=msg.topic(),
            partition=msg.partition(),
            offset=msg.offset(),
            timestamp=timestamp,
            success=True,
        )

    # =====================================================================
    #  Consume / peek
    # =====================================================================

    def consume_messages(
        self,
        topic: str,
        max_messages: int = 10,
        from_beginning: bool = True,
        timeout: float = 10.0,
    ) -> List[KafkaMessage]:
        """Read up to ``max_messages`` within ``timeout`` seconds.

        Whichever limit is reached first ends the call. Returns partial
        results without error once polling has started; records that are
        not valid UTF-8 are logged and skipped.
        """
        if max_messages < 1:
            raise BadArgumentError(f"maxMessages must be at least 1, got {max_messages}")
        if timeout < 0:
            raise BadArgumentError(f"timeout must not be negative, got {timeout}")

        reset = "earliest" if from_beginning else "latest"
        consumer = self.new_consumer(CONSUME_GROUP_PREFIX, reset)
        messages: List[KafkaMessage] = []
        try:
            self._ensure_topic_exists(consumer, topic)
            try:
                consumer.subscribe([topic])
            except KafkaException as exc:
                raise translate_kafka_exception(exc, f"topic '{topic}'") from exc

            deadline = time.monotonic() + timeout
            while len(messages) < max_messages:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    batch = consumer.consume(
                        num_messages=min(max_messages - len(messages), MAX_CONSUME_BATCH),
                        timeout=min(CONSUME_POLL_INTERVAL, remaining),
                    )
                except KafkaException as exc:
                    logger.warning("Consume from %s stopped early: %s", topic, exc)
                    break
                for msg in batch:
                    err = msg.error()
                    if err is not None:
                        if err.code() != KafkaError._PARTITION_EOF:
                            logger.warning("Skipping consumer error on %s: %s", topic, err)
                        continue
                    try:
                        messages.append(_to_message(msg))
                    except SerializationError as exc:
                        logger.warning("Skipping undecodable record on %s: %s", topic, exc)
                        continue
                    if len(messages) >= max_messages:
                        break
        finally:
            consumer.close()

        logger.info("Consumed %d message(s) from %s", len(messages), topic)
        return messages

    def peek_messages(self, topic: str, partition: int, offset: int, count: int = 5) -> List[KafkaMessage]:
        """Read ``count`` records of one partition starting at ``offset``.

        An offset outside the retained range raises OffsetOutOfRangeError;
        an offset at or past the end returns what is there (possibly
        nothing) after one empty poll.
        """
        if count < 1:
            raise BadArgumentError(f"count must be at least 1, got {count}")
        if partition < 0:
            raise BadArgumentError(f"partition must not be negative, got {partition}")
        if offset < 0:
            raise BadArgumentError(f"offset must not be negative, got {offset}")

        context = f"topic '{topic}' partition {partition} offset {offset}"
        consumer = self.new_consumer(PEEK_GROUP_PREFIX, "error")
        messages: List[KafkaMessage] = []
        try:
            consumer.assign([TopicPartition(topic, partition, offset)])
            while len(messages) < count:
                batch = consumer.consume(
                    num_messages=min(count - len(messages), MAX_CONSUME_BATCH),
                    timeout=PEEK_POLL_TIMEOUT,
                )
                if not batch:
                    break
                for msg in batch:
                    err = msg.error()
                    if err is not None:
                        if err.code() == KafkaError._PARTITION_EOF:
                            continue
                        raise translate_kafka_error(err, context)
                    messages.append(_to_message(msg))
                    if len(messages) >= count:
                        break
        except KafkaToolError:
            raise
        except Exception as exc:
            raise translate_kafka_exception(exc, context) from exc
        finally:
            consumer.close()

        return messages

    def _ensure_topic_exists(self, consumer, topic: str):
        try:
            metadata = consumer.list_topics(topic, timeout=self.request_timeout)
        except Exception as exc:
            raise translate_kafka_exception(exc, f"topic '{topic}'") from exc
        topic_md = metadata.topics.get(topic)
        if topic_md is None:
            raise UnknownTopicError(f"topic '{topic}': does not exist")
        if topic_md.error is not None:
            if topic_md.error.code() in _MISSING_TOPIC_CODES:
                raise UnknownTopicError(
                    f"topic '{topic}': does not exist", code=topic_md.error.code()
                )
            raise translate_kafka_error(topic_md.error, f"topic '{topic}'")

    # =====================================================================
    #  Consumer groups
    # =====================================================================

    def list_consumer_groups(self) -> List[str]:
        result = self._admin_call(
            "list consumer groups",
            lambda admin: admin.list_consumer_groups(
                request_timeout=self.request_timeout
            ).result(),
        )
        for error in result.errors or []:
            logger.warning("Consumer group listing reported: %s", error)
        return [listing.group_id for listing in result.valid]

    def describe_consumer_group(self, group_id: str) -> ConsumerGroupInfo:
        """Describe members and per-topic assignments of a group."""

        def _describe(admin):
            futures = admin.describe_consumer_groups(
                [group_id], request_timeout=self.request_timeout
            )
            return futures[group_id].result()

        description = self._admin_call(f"consumer group '{group_id}'", _describe)

        state = _enum_name(description.state)
        members = list(description.members or [])
        if state == "DEAD" and not members:
            raise UnknownGroupError(f"consumer group '{group_id}': does not exist")

        member_infos = []
        for member in members:
            by_topic: Dict[str, List[int]] = {}
            topic_partitions = member.assignment.topic_partitions if member.assignment else []
            for tp in topic_partitions:
                by_topic.setdefault(tp.topic, []).append(tp.partition)
            member_infos.append(MemberInfo(
                member_id=member.member_id,
                client_id=member.client_id,
                host=member.host,
                assignments=[
                    TopicPartitionAssignment(topic=t, partitions=parts)
                    for t, parts in by_topic.items()
                ],
            ))

        coordinator = description.coordinator
        return ConsumerGroupInfo(
            group_id=description.group_id,
            state=state,
            coordinator=f"{coordinator.host}:{coordinator.port}" if coordinator is not None else None,
            partition_assignor=description.partition_assignor,
            members=member_infos,
        )

    # =====================================================================
    #  Cluster
    # =====================================================================

    def describe_cluster(self) -> ClusterInfo:
        result = self._admin_call(
            "describe cluster",
            lambda admin: admin.describe_cluster(
                request_timeout=self.request_timeout
            ).result(),
        )
        if result.controller is None:
            raise NoControllerError("cluster has no active controller")
        return ClusterInfo(
            cluster_id=result.cluster_id,
            controller=_broker_info(result.controller),
            brokers=[_broker_info(node) for node in result.nodes],
        )


# =========================================================================
#  Helpers
# =========================================================================

def _encode(text: Optional[str]) -> Optional[bytes]:
    return text.encode("utf-8") if text is not None else None


def _decode(raw: Optional[bytes], what: str, msg) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SerializationError(
            f"topic '{msg.topic()}' partition {msg.partition()} offset {msg.offset()}: "
            f"{what} is not valid UTF-8 ({exc.reason})"
        ) from exc


def _to_message(msg) -> KafkaMessage:
    headers = {
        name: _decode(raw, f"header '{name}'", msg)
        for name, raw in (msg.headers() or [])
    }
    _, timestamp = msg.timestamp()
    return KafkaMessage(
        topic=msg.topic(),
        partition=msg.partition(),
        offset=msg.offset(),
        key=_decode(msg.key(), "key", msg),
        value=_decode(msg.value(), "value", msg),
        timestamp=timestamp,
        headers=headers,
    )


def _broker_info(node) -> BrokerInfo:
    return BrokerInfo(id=node.id, host=node.host, port=node.port, rack=node.rack)


def _enum_name(value) -> str:
    return getattr(value, "name", None) or str(value)
