"""RabbitMQTransport: IBrokerTransport over aio-pika with manual ack and delayed exchanges."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika.exceptions import AMQPError, DeliveryError

from .. import constants
from ..exceptions import (
    MessagingConnectionError,
    MessagingError,
    NoMatchingQueueError,
    SchedulingError,
    UnknownExchangeError,
)
from ..ports import Delivery, IBrokerTransport
from ..topology import ExchangeType
from .topology import declare_topology

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from aio_pika.abc import (
        AbstractChannel,
        AbstractExchange,
        AbstractIncomingMessage,
        AbstractQueue,
    )

    from ..topology import BindingTable
    from .connection import RabbitMQConnectionManager

logger = logging.getLogger("demo_messaging.rabbitmq")


class _AioPikaHandle:
    """Settles one aio-pika delivery; a second settlement raises."""

    def __init__(self, message: AbstractIncomingMessage) -> None:
        self._message = message
        self.settled: str | None = None

    def _settle(self, how: str) -> None:
        if self.settled is not None:
            raise MessagingError(f"Delivery already settled ({self.settled})")
        self.settled = how

    async def ack(self) -> None:
        self._settle("ack")
        await self._message.ack()

    async def nack(self, requeue: bool = True) -> None:
        self._settle("requeue" if requeue else "reject")
        await self._message.nack(requeue=requeue)


class RabbitMQTransport(IBrokerTransport):
    """RabbitMQ adapter implementing IBrokerTransport.

    The binding table is declared on first use (durable exchanges and
    queues). Messages are published persistent with publisher confirms; direct
    publishes are mandatory so an unroutable key surfaces as
    NoMatchingQueueError. With ``delayed_exchange_plugin`` the delay exchange
    is an ``x-delayed-message`` exchange and ``delay_ms`` travels as the
    ``x-delay`` header; that plugin does not support mandatory publishes.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        topology: BindingTable,
        *,
        delayed_exchange_plugin: bool = True,
        declare: bool = True,
    ) -> None:
        """Configure the transport.

        Args:
            connection: Shared connection manager.
            topology: Exchanges, queues and bindings to declare and route by.
            delayed_exchange_plugin: Broker has rabbitmq_delayed_message_exchange.
            declare: Declare the topology on first use.
        """
        self._connection = connection
        self._topology = topology
        self._declare = declare
        self.supports_delay = delayed_exchange_plugin
        self._exchanges: dict[str, AbstractExchange] = {}
        self._consumers: dict[str, tuple[AbstractChannel, AbstractQueue, str]] = {}
        self._ready = False
        self._lock = asyncio.Lock()

    async def _ensure_ready(self) -> None:
        if self._ready:
            return
        async with self._lock:
            if self._ready:
                return
            await self._connection.connect()
            channel = self._connection.channel
            try:
                if self._declare:
                    self._exchanges = await declare_topology(
                        channel,
                        self._topology,
                        delayed_exchange_plugin=self.supports_delay,
                    )
                else:
                    for name in self._topology.exchanges:
                        self._exchanges[name] = await channel.get_exchange(name)
            except (AMQPError, ConnectionError) as e:
                raise MessagingConnectionError(f"Topology declaration failed: {e}") from e
            self._ready = True

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        headers: Mapping[str, Any] | None = None,
        delay_ms: int | None = None,
    ) -> None:
        """Publish ``body`` persistently to ``exchange``.

        Raises:
            UnknownExchangeError: ``exchange`` is not in the binding table.
            SchedulingError: ``delay_ms`` given for a non-delayed exchange or
                without the delayed-message plugin.
            NoMatchingQueueError: the broker returned a mandatory publish.
            MessagingConnectionError: the broker is unreachable.
        """
        exchange_type = self._topology.exchange_type(exchange)
        delayed = self.supports_delay and self._topology.is_delayed(exchange)
        hdrs: dict[str, Any] = dict(headers or {})
        if delay_ms is not None:
            if not delayed:
                raise SchedulingError(
                    f"Exchange {exchange!r} does not accept per-message delays",
                    message_id=hdrs.get("message_id"),
                )
            hdrs[constants.DELAY_HEADER] = int(delay_ms)
        await self._ensure_ready()
        target = self._exchanges.get(exchange)
        if target is None:
            raise UnknownExchangeError(exchange)
        message = aio_pika.Message(
            body=body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=hdrs.get("message_id"),
            headers=hdrs,
        )
        mandatory = exchange_type is ExchangeType.DIRECT and not delayed
        try:
            await target.publish(message, routing_key=routing_key, mandatory=mandatory)
        except DeliveryError as e:
            raise NoMatchingQueueError(
                exchange, routing_key, message_id=hdrs.get("message_id")
            ) from e
        except (AMQPError, ConnectionError) as e:
            raise MessagingConnectionError(f"Publish to {exchange!r} failed: {e}") from e

    async def consume(
        self,
        queue: str,
        on_delivery: Callable[[Delivery], Awaitable[None]],
        *,
        prefetch_count: int = 1,
    ) -> None:
        """Consume ``queue`` on its own channel with QoS ``prefetch_count``."""
        if prefetch_count < 1:
            raise ValueError("prefetch_count must be >= 1")
        if queue in self._consumers:
            raise MessagingError(f"Queue {queue!r} already has a consumer")
        await self._ensure_ready()
        try:
            channel = await self._connection.open_channel()
            await channel.set_qos(prefetch_count=prefetch_count)
            amqp_queue = await channel.declare_queue(queue, durable=True)

            async def on_message(raw: AbstractIncomingMessage) -> None:
                handle = _AioPikaHandle(raw)
                try:
                    await on_delivery(
                        Delivery(
                            body=raw.body,
                            handle=handle,
                            queue=queue,
                            exchange=raw.exchange or "",
                            routing_key=raw.routing_key or "",
                            redelivered=bool(raw.redelivered),
                            headers=dict(raw.headers or {}),
                        )
                    )
                except Exception:
                    logger.exception("Consumer callback failed on %s", queue)
                finally:
                    if handle.settled is None:
                        logger.warning("Delivery on %s left unsettled; requeueing", queue)
                        await handle.nack(requeue=True)

            tag = await amqp_queue.consume(on_message)
        except (AMQPError, ConnectionError) as e:
            raise MessagingConnectionError(f"Consume on {queue!r} failed: {e}") from e
        self._consumers[queue] = (channel, amqp_queue, tag)
        logger.info("Consuming %s with prefetch %d", queue, prefetch_count)

    async def health_check(self) -> bool:
        return await self._connection.health_check()

    async def cancel(self, queue: str) -> None:
        """Cancel the consumer of ``queue`` and close its channel.

        Closing the channel returns its unacked deliveries to the queue.
        """
        consumer = self._consumers.pop(queue, None)
        if consumer is None:
            return
        channel, amqp_queue, tag = consumer
        try:
            await amqp_queue.cancel(tag)
            await channel.close()
        except (AMQPError, ConnectionError):
            logger.warning("Error cancelling consumer %s", tag, exc_info=True)
        else:
            logger.info("Stopped consuming %s", queue)

    async def close(self) -> None:
        """Cancel consumers, close their channels and the connection."""
        for queue in list(self._consumers):
            await self.cancel(queue)
        self._exchanges.clear()
        self._ready = False
        await self._connection.close()
