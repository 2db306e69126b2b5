"""Messaging-specific exceptions for demo-messaging."""

from __future__ import annotations


class MessagingError(Exception):
    """Root exception for every messaging failure raised by this package."""


class MessagingConnectionError(MessagingError):
    """Raised when connectivity to the message broker fails."""


class MessagingSerializationError(MessagingError):
    """Raised when an envelope cannot be encoded or decoded at the transport boundary."""


class InvalidEnvelopeError(MessagingError):
    """Raised when an envelope is not fit to be sent (missing routing key, wrong type)."""


class RoutingError(MessagingError):
    """Base class for routing failures surfaced synchronously to the producer."""


class UnknownExchangeError(RoutingError):
    """Raised when an exchange is not part of the binding table."""

    def __init__(self, exchange: str) -> None:
        self.exchange = exchange
        super().__init__(f"Exchange {exchange!r} is not declared")


class NoMatchingQueueError(RoutingError):
    """Raised when a direct publish finds no queue bound to its routing key."""

    def __init__(
        self,
        exchange: str | None,
        routing_key: str,
        message_id: str | None = None,
    ) -> None:
        self.exchange = exchange
        self.routing_key = routing_key
        self.message_id = message_id
        where = f"exchange {exchange!r}" if exchange else "direct exchanges"
        super().__init__(f"No queue bound on {where} for routing key {routing_key!r}")


class SchedulingError(MessagingError):
    """Raised when a delayed envelope cannot be scheduled."""

    def __init__(self, message: str, message_id: str | None = None) -> None:
        self.message_id = message_id
        super().__init__(message)


class HandlerRegistrationError(MessagingError):
    """Raised on duplicate or missing queue handler registrations."""


class DeadLetterError(MessagingError):
    """Raised when an exhausted envelope cannot be handed to the dead-letter path."""

    def __init__(self, message: str, message_id: str | None = None) -> None:
        self.message_id = message_id
        super().__init__(message)
