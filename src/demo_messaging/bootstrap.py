"""Wire topology, transport, producer, scheduler and consumer from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .consumer import DeliveryConsumer
from .dead_letter import DeadLetterHandler
from .delay import DelayScheduler
from .handlers import DemoHandlers
from .idempotency import IdempotencyFilter
from .memory import InMemoryBroker
from .producer import MessageProducer
from .rabbitmq import RabbitMQConnectionManager, RabbitMQTransport
from .retry import RetryPolicy
from .routing import ExchangeRouter
from .serialization import EnvelopeSerializer
from .settings import MessagingSettings
from .topology import default_topology

if TYPE_CHECKING:
    from .ports import IBrokerTransport
    from .topology import BindingTable

logger = logging.getLogger("demo_messaging")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for the demo process."""
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


@dataclass
class MessagingApp:
    """Everything needed to publish, schedule and consume on one transport."""

    settings: MessagingSettings
    topology: BindingTable
    transport: IBrokerTransport
    router: ExchangeRouter
    producer: MessageProducer
    scheduler: DelayScheduler
    consumer: DeliveryConsumer
    handlers: DemoHandlers

    async def start(self) -> None:
        await self.consumer.start()
        logger.info("Messaging app started on %s transport", self.settings.transport)

    async def stop(self, *, drain: bool = False) -> None:
        """Stop scheduling and consuming, then close the transport.

        With ``drain`` process-held delayed envelopes are released first.
        """
        await self.scheduler.stop(drain=drain)
        await self.consumer.stop()
        await self.transport.close()
        logger.info("Messaging app stopped")


def build_transport(
    settings: MessagingSettings, topology: BindingTable
) -> IBrokerTransport:
    if settings.transport == "rabbitmq":
        return RabbitMQTransport(
            RabbitMQConnectionManager.from_settings(settings),
            topology,
            delayed_exchange_plugin=settings.delayed_exchange_plugin,
        )
    return InMemoryBroker(topology)


def build_app(
    settings: MessagingSettings | None = None,
    *,
    transport: IBrokerTransport | None = None,
    topology: BindingTable | None = None,
) -> MessagingApp:
    """Build a MessagingApp with the demo handlers registered.

    Args:
        settings: Defaults to ``MessagingSettings()`` read from the environment.
        transport: Overrides the transport chosen by ``settings.transport``.
        topology: Overrides the default demo binding table.
    """
    settings = settings or MessagingSettings()
    topology = topology or default_topology()
    transport = transport or build_transport(settings, topology)
    serializer = EnvelopeSerializer()
    router = ExchangeRouter(topology)
    producer = MessageProducer(transport, router, serializer=serializer)
    scheduler = DelayScheduler(producer, default_delay_ms=settings.default_delay_ms)
    dead_letter = (
        DeadLetterHandler(transport, serializer=serializer)
        if settings.dead_letter_enabled
        else None
    )
    idempotency = (
        IdempotencyFilter(ttl_seconds=settings.idempotency_ttl_seconds)
        if settings.idempotency_enabled
        else None
    )
    consumer = DeliveryConsumer(
        transport,
        serializer=serializer,
        retry_policy=RetryPolicy(
            max_attempts=settings.redelivery_max_attempts,
            base_delay=settings.redelivery_base_delay,
            max_delay=settings.redelivery_max_delay,
        ),
        dead_letter=dead_letter,
        idempotency=idempotency,
        max_concurrency=settings.max_concurrency,
    )
    handlers = DemoHandlers()
    handlers.register_all(consumer, concurrency=settings.consumer_concurrency)
    return MessagingApp(
        settings=settings,
        topology=topology,
        transport=transport,
        router=router,
        producer=producer,
        scheduler=scheduler,
        consumer=consumer,
        handlers=handlers,
    )
