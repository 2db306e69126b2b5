"""Demo consumers for every queue of the default topology.

Each handler logs what it received, classifies the envelope and records it
for inspection. Handlers return :class:`Ack` with their receiver name; the
delivery consumer settles the broker delivery.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from . import constants
from .outcome import Ack

if TYPE_CHECKING:
    from .consumer import DeliveryConsumer
    from .envelope import MessageEnvelope

logger = logging.getLogger("demo_messaging.handlers")

_ORDER_ID = re.compile(r"orderId=(\S+)")


@dataclass(frozen=True)
class HandledMessage:
    receiver: str
    queue: str
    envelope: MessageEnvelope
    category: str
    received_at: datetime = field(default_factory=datetime.now)


def classify_log_level(content: str) -> int:
    lowered = content.lower()
    if "error" in lowered or "exception" in lowered:
        return logging.ERROR
    if "warn" in lowered:
        return logging.WARNING
    return logging.INFO


def classify_user_message(routing_key: str) -> str:
    for kind in ("email", "sms"):
        if kind in routing_key:
            return kind
    return "generic"


def classify_order_message(routing_key: str) -> str:
    for action in ("create", "payment", "cancel", "complete"):
        if action in routing_key:
            return action
    return "generic"


def classify_delay_message(content: str) -> str:
    """Business category of a delayed envelope, decided from its content."""
    lowered = content.lower()
    if "task reminder" in lowered:
        return "task_reminder"
    if "order timeout" in lowered:
        return "order_timeout"
    if "scheduled" in lowered:
        return "scheduled"
    return "generic"


def extract_order_id(content: str) -> str | None:
    match = _ORDER_ID.search(content)
    return match.group(1) if match else None


def delay_drift_ms(envelope: MessageEnvelope, received_at: datetime) -> tuple[int, int] | None:
    """Return (actual delay, |actual - expected|) in ms, or None without a delay.

    ``create_time`` has one-second precision so the drift is accurate to about
    a second.
    """
    if envelope.delay is None:
        return None
    actual = round((received_at - envelope.create_time).total_seconds() * 1000)
    return actual, abs(actual - envelope.delay)


class DemoHandlers:
    """Handlers for the demo queues, registered with :meth:`register_all`.

    ``simulated_latency`` (seconds) is awaited in every handler to mimic
    processing time. Everything handled is appended to :attr:`handled` and
    counted in :attr:`statistics` by message type.
    """

    def __init__(self, *, simulated_latency: float = 0.0) -> None:
        if simulated_latency < 0:
            raise ValueError("simulated_latency must be >= 0")
        self._latency = simulated_latency
        self.handled: list[HandledMessage] = []
        self.statistics: Counter[str] = Counter()
        self.dead_letters: list[MessageEnvelope] = []
        self.cancelled_orders: list[str] = []

    def register_all(self, consumer: DeliveryConsumer, *, concurrency: int = 1) -> None:
        routes = {
            constants.DIRECT_QUEUE: (self.handle_direct, "DirectConsumer"),
            constants.FANOUT_QUEUE_1: (self.handle_fanout_log, "LogService"),
            constants.FANOUT_QUEUE_2: (self.handle_fanout_statistics, "StatisticsService"),
            constants.TOPIC_QUEUE_USER: (self.handle_user_topic, "UserService"),
            constants.TOPIC_QUEUE_ORDER: (self.handle_order_topic, "OrderService"),
            constants.TOPIC_QUEUE_ALL: (self.handle_monitor_topic, "MonitorService"),
            constants.DELAY_QUEUE: (self.handle_delay, "DelayConsumer"),
            constants.DEAD_LETTER_QUEUE: (self.handle_dead_letter, "DeadLetterObserver"),
        }
        for queue, (handler, receiver) in routes.items():
            consumer.register(queue, handler, receiver=receiver, concurrency=concurrency)

    def received(self, receiver: str) -> list[MessageEnvelope]:
        """Envelopes handled by ``receiver``, in handling order."""
        return [h.envelope for h in self.handled if h.receiver == receiver]

    async def _record(
        self, receiver: str, queue: str, envelope: MessageEnvelope, category: str
    ) -> Ack:
        if self._latency:
            await asyncio.sleep(self._latency)
        self.handled.append(
            HandledMessage(
                receiver=receiver,
                queue=queue,
                envelope=envelope.received_by(receiver),
                category=category,
            )
        )
        return Ack(receiver)

    async def handle_direct(self, envelope: MessageEnvelope) -> Ack:
        logger.info(
            "[DirectConsumer] %s from %s: %s",
            envelope.message_id,
            envelope.sender,
            envelope.content,
        )
        return await self._record("DirectConsumer", constants.DIRECT_QUEUE, envelope, "direct")

    async def handle_fanout_log(self, envelope: MessageEnvelope) -> Ack:
        logger.log(
            classify_log_level(envelope.content),
            "[LogService] broadcast %s: %s",
            envelope.message_id,
            envelope.content,
        )
        return await self._record("LogService", constants.FANOUT_QUEUE_1, envelope, "log")

    async def handle_fanout_statistics(self, envelope: MessageEnvelope) -> Ack:
        self.statistics[envelope.message_type.value] += 1
        logger.info(
            "[StatisticsService] %s count is now %d",
            envelope.message_type.value,
            self.statistics[envelope.message_type.value],
        )
        return await self._record(
            "StatisticsService", constants.FANOUT_QUEUE_2, envelope, "statistics"
        )

    async def handle_user_topic(self, envelope: MessageEnvelope) -> Ack:
        kind = classify_user_message(envelope.routing_key or "")
        logger.info(
            "[UserService] %s message on %s: %s",
            kind,
            envelope.routing_key,
            envelope.content,
        )
        return await self._record("UserService", constants.TOPIC_QUEUE_USER, envelope, kind)

    async def handle_order_topic(self, envelope: MessageEnvelope) -> Ack:
        action = classify_order_message(envelope.routing_key or "")
        logger.info(
            "[OrderService] %s message on %s: %s",
            action,
            envelope.routing_key,
            envelope.content,
        )
        return await self._record("OrderService", constants.TOPIC_QUEUE_ORDER, envelope, action)

    async def handle_monitor_topic(self, envelope: MessageEnvelope) -> Ack:
        logger.info(
            "[MonitorService] type=%s sender=%s routingKey=%s created=%s",
            envelope.message_type.value,
            envelope.sender,
            envelope.routing_key,
            envelope.create_time,
        )
        return await self._record(
            "MonitorService", constants.TOPIC_QUEUE_ALL, envelope, "monitor"
        )

    async def handle_delay(self, envelope: MessageEnvelope) -> Ack:
        received_at = datetime.now()
        drift = delay_drift_ms(envelope, received_at)
        if drift is not None:
            logger.info(
                "[DelayConsumer] %s expected delay %dms, actual %dms, drift %dms",
                envelope.message_id,
                envelope.delay,
                *drift,
            )
        category = classify_delay_message(envelope.content)
        if category == "order_timeout":
            order_id = extract_order_id(envelope.content)
            if order_id:
                logger.info("[DelayConsumer] cancelling unpaid order %s", order_id)
                self.cancelled_orders.append(order_id)
        elif category == "task_reminder":
            logger.info("[DelayConsumer] reminder: %s", envelope.content)
        else:
            logger.info("[DelayConsumer] %s delayed message: %s", category, envelope.content)
        return await self._record("DelayConsumer", constants.DELAY_QUEUE, envelope, category)

    async def handle_dead_letter(self, envelope: MessageEnvelope) -> Ack:
        logger.warning(
            "[DeadLetterObserver] parked %s (%s): %s",
            envelope.message_id,
            envelope.routing_key,
            envelope.content,
        )
        self.dead_letters.append(envelope)
        return await self._record(
            "DeadLetterObserver", constants.DEAD_LETTER_QUEUE, envelope, "dead_letter"
        )
