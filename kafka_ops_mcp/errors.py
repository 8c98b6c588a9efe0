"""
Domain Errors

Typed errors raised by the broker gateway and the translation of
confluent-kafka error codes into them. The tool surface catches every one
of these at its boundary and renders it as a JSON error envelope.
"""

from typing import Optional

from confluent_kafka import KafkaError, KafkaException


class KafkaToolError(Exception):
    """Base class for every error the gateway raises."""

    kind = "Internal"

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class BrokerUnavailableError(KafkaToolError):
    """Cannot reach or authenticate with the cluster."""
    kind = "BrokerUnavailable"


class UnknownTopicError(KafkaToolError):
    kind = "UnknownTopic"


class UnknownGroupError(KafkaToolError):
    kind = "UnknownGroup"


class NoControllerError(KafkaToolError):
    kind = "NoController"


class TopicExistsError(KafkaToolError):
    kind = "TopicExists"


class InvalidPartitionCountError(KafkaToolError):
    kind = "InvalidPartitionCount"


class InvalidReplicationError(KafkaToolError):
    kind = "InvalidReplication"


class OffsetOutOfRangeError(KafkaToolError):
    """Peek outside the partition's retained range."""
    kind = "OffsetOutOfRange"


class SerializationError(KafkaToolError):
    """Record bytes that cannot be decoded as UTF-8."""
    kind = "Serialization"


class BadArgumentError(KafkaToolError, ValueError):
    """Malformed tool input: bad headers JSON, negative counts, etc."""
    kind = "BadArgument"


class InternalError(KafkaToolError):
    kind = "Internal"


# =========================================================================
#  confluent-kafka code mapping
# =========================================================================

_CODE_MAP = {
    KafkaError._TRANSPORT: BrokerUnavailableError,
    KafkaError._ALL_BROKERS_DOWN: BrokerUnavailableError,
    KafkaError._TIMED_OUT: BrokerUnavailableError,
    KafkaError.REQUEST_TIMED_OUT: BrokerUnavailableError,
    KafkaError._RESOLVE: BrokerUnavailableError,
    KafkaError._AUTHENTICATION: BrokerUnavailableError,
    KafkaError.SASL_AUTHENTICATION_FAILED: BrokerUnavailableError,
    KafkaError.UNKNOWN_TOPIC_OR_PART: UnknownTopicError,
    KafkaError._UNKNOWN_TOPIC: UnknownTopicError,
    KafkaError._UNKNOWN_PARTITION: UnknownTopicError,
    KafkaError.GROUP_ID_NOT_FOUND: UnknownGroupError,
    KafkaError.TOPIC_ALREADY_EXISTS: TopicExistsError,
    KafkaError.INVALID_PARTITIONS: InvalidPartitionCountError,
    KafkaError.INVALID_REPLICATION_FACTOR: InvalidReplicationError,
    KafkaError.OFFSET_OUT_OF_RANGE: OffsetOutOfRangeError,
    KafkaError._AUTO_OFFSET_RESET: OffsetOutOfRangeError,
}


def error_class_for(code: int) -> type:
    """Return the domain error class for a confluent-kafka error code."""
    return _CODE_MAP.get(code, InternalError)


def translate_kafka_error(err: KafkaError, context: str = "") -> KafkaToolError:
    """Turn a KafkaError into the matching domain error.

    Args:
        err: Error object reported by the client (message or future)
        context: Target description prepended to the message, e.g. "topic 'orders'"
    """
    code = err.code()
    detail = err.str() or err.name()
    message = f"{context}: {detail}" if context else detail
    return error_class_for(code)(message, code=code)


def translate_kafka_exception(exc: Exception, context: str = "") -> KafkaToolError:
    """Map any exception raised by a client call onto a domain error.

    Domain errors pass through unchanged. KafkaException carries its
    KafkaError as the first argument; anything else becomes Internal.
    """
    if isinstance(exc, KafkaToolError):
        return exc
    if isinstance(exc, KafkaException) and exc.args and isinstance(exc.args[0], KafkaError):
        return translate_kafka_error(exc.args[0], context)
    message = f"{context}: {exc}" if context else str(exc)
    return InternalError(message)
