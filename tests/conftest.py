from unittest.mock import MagicMock

import pytest

from kafka_ops_mcp.gateway import BrokerGateway

from tests.fakes import FakeConsumer, FakeProducer


@pytest.fixture
def admin():
    return MagicMock(name="AdminClient")


@pytest.fixture
def producer():
    return FakeProducer()


@pytest.fixture
def consumer():
    return FakeConsumer()


@pytest.fixture
def gateway(admin, producer, consumer):
    def consumer_factory(conf):
        consumer.conf = conf
        return consumer

    return BrokerGateway(
        {"bootstrap.servers": "localhost:9092", "client.id": "test"},
        request_timeout=1.0,
        produce_timeout=0.5,
        admin_factory=lambda conf: admin,
        producer_factory=lambda conf: producer,
        consumer_factory=consumer_factory,
    )
