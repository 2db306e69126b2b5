"""Exchange routing, acknowledged delivery and delayed delivery over RabbitMQ or in memory."""

from __future__ import annotations

from .bootstrap import MessagingApp, build_app, configure_logging
from .consumer import DeliveryConsumer
from .dead_letter import DeadLetterHandler
from .delay import DelayScheduler
from .envelope import MessageEnvelope, MessageType
from .exceptions import (
    DeadLetterError,
    HandlerRegistrationError,
    InvalidEnvelopeError,
    MessagingConnectionError,
    MessagingError,
    MessagingSerializationError,
    NoMatchingQueueError,
    RoutingError,
    SchedulingError,
    UnknownExchangeError,
)
from .idempotency import IdempotencyFilter
from .memory import InMemoryBroker
from .outcome import Ack, DeliveryResult, DeliveryState, NackRequeue
from .producer import MessageProducer
from .retry import RetryPolicy
from .routing import ExchangeRouter, topic_matches
from .serialization import EnvelopeSerializer
from .settings import MessagingSettings
from .topology import BindingTable, ExchangeBinding, ExchangeType, default_topology

__all__ = [
    "Ack",
    "BindingTable",
    "DeadLetterError",
    "DeadLetterHandler",
    "DelayScheduler",
    "DeliveryConsumer",
    "DeliveryResult",
    "DeliveryState",
    "EnvelopeSerializer",
    "ExchangeBinding",
    "ExchangeRouter",
    "ExchangeType",
    "HandlerRegistrationError",
    "IdempotencyFilter",
    "InMemoryBroker",
    "InvalidEnvelopeError",
    "MessageEnvelope",
    "MessageProducer",
    "MessageType",
    "MessagingApp",
    "MessagingConnectionError",
    "MessagingError",
    "MessagingSerializationError",
    "MessagingSettings",
    "NackRequeue",
    "NoMatchingQueueError",
    "RetryPolicy",
    "RoutingError",
    "SchedulingError",
    "UnknownExchangeError",
    "build_app",
    "configure_logging",
    "default_topology",
    "topic_matches",
]
