from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping


@runtime_checkable
class IDeliveryHandle(Protocol):
    """
    Broker-side handle of one delivered message.

    Exactly one of ``ack`` / ``nack`` is called per delivery.
    """

    async def ack(self) -> None:
        """Mark the delivery consumed."""
        ...

    async def nack(self, requeue: bool = True) -> None:
        """Reject the delivery; put it back on its queue when ``requeue`` is True."""
        ...


@dataclass(frozen=True)
class Delivery:
    """A raw message handed to a consumer callback by a transport."""

    body: bytes
    handle: IDeliveryHandle
    queue: str
    exchange: str = ""
    routing_key: str = ""
    redelivered: bool = False
    headers: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class IBrokerTransport(Protocol):
    """
    Port for the message broker (RabbitMQ, in-memory, …).

    The broker owns queue storage and durability; this package only publishes
    bytes to exchanges and consumes bytes from queues.
    """

    supports_delay: bool

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        headers: Mapping[str, Any] | None = None,
        delay_ms: int | None = None,
    ) -> None:
        """
        Publish *body* to *exchange* with *routing_key*.

        Args:
            exchange: Exchange name from the binding table.
            routing_key: Routing key (ignored by fanout exchanges).
            body: Serialized envelope.
            headers: Transport headers.
            delay_ms: Per-message delay; only valid when ``supports_delay``.
        """
        ...

    async def consume(
        self,
        queue: str,
        on_delivery: Callable[[Delivery], Awaitable[None]],
        *,
        prefetch_count: int = 1,
    ) -> None:
        """
        Start delivering messages from *queue* to *on_delivery*.

        At most ``prefetch_count`` deliveries are in flight at once; with 1
        the queue is processed in order.
        """
        ...

    async def cancel(self, queue: str) -> None:
        """
        Stop delivering from *queue*; no-op when it is not being consumed.

        Unsettled deliveries are returned to the queue.
        """
        ...

    async def health_check(self) -> bool:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ICacheService(Protocol):
    """Minimal async key/value store used for distributed idempotency."""

    async def get(self, key: str) -> Any:
        ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        ...
