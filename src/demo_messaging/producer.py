"""MessageProducer: build, validate, route-check and publish envelopes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import constants
from .envelope import MessageEnvelope, MessageType
from .exceptions import InvalidEnvelopeError, MessagingError
from .serialization import EnvelopeSerializer
from .structured_logging import log_outcome
from .topology import ExchangeType

if TYPE_CHECKING:
    from .ports import IBrokerTransport
    from .routing import ExchangeRouter

logger = logging.getLogger("demo_messaging.producer")

_EXCHANGE_FOR_TYPE = {
    MessageType.DIRECT: constants.DIRECT_EXCHANGE,
    MessageType.FANOUT: constants.FANOUT_EXCHANGE,
    MessageType.TOPIC: constants.TOPIC_EXCHANGE,
}


class MessageProducer:
    """Publishes envelopes through an :class:`IBrokerTransport`.

    Routing is checked against the local :class:`ExchangeRouter` before the
    publish so that an unroutable direct message fails in the caller
    (``NoMatchingQueueError``) rather than disappearing in the broker. Past the
    publish acknowledgement delivery is fire-and-forget.
    """

    def __init__(
        self,
        transport: IBrokerTransport,
        router: ExchangeRouter,
        *,
        serializer: EnvelopeSerializer | None = None,
    ) -> None:
        self._transport = transport
        self._router = router
        self._serializer = serializer or EnvelopeSerializer()

    @property
    def transport(self) -> IBrokerTransport:
        return self._transport

    @property
    def router(self) -> ExchangeRouter:
        return self._router

    @property
    def serializer(self) -> EnvelopeSerializer:
        return self._serializer

    def check_route(self, exchange: str, envelope: MessageEnvelope) -> frozenset[str]:
        """Validate ``envelope`` for ``exchange`` and return its target queues.

        Raises:
            InvalidEnvelopeError: the envelope type does not fit the exchange,
                or a direct/topic envelope has no routing key.
            RoutingError: the exchange is unknown or a direct key is unbound.
        """
        exchange_type = self._router.table.exchange_type(exchange)
        expected = ExchangeType.for_message_type(envelope.message_type)
        if exchange_type is not expected:
            raise InvalidEnvelopeError(
                f"{envelope.message_type.value} envelope cannot be sent to "
                f"{exchange_type.value} exchange {exchange!r}"
            )
        if exchange_type is not ExchangeType.FANOUT and not envelope.routing_key:
            raise InvalidEnvelopeError(
                f"{envelope.message_type.value} envelope {envelope.message_id} "
                "needs a routing key"
            )
        return self._router.route(
            exchange_type, envelope.routing_key or "", envelope, exchange=exchange
        )

    async def publish(
        self,
        exchange: str,
        envelope: MessageEnvelope,
        *,
        delay_ms: int | None = None,
    ) -> MessageEnvelope:
        """Publish ``envelope`` to ``exchange``.

        Returns the envelope as sent. Routing, serialization and transport
        failures are raised to the caller.
        """
        routing_key = envelope.routing_key or ""
        try:
            queues = self.check_route(exchange, envelope)
            body = self._serializer.serialize(envelope)
            await self._transport.publish(
                exchange,
                routing_key,
                body,
                headers={
                    "message_id": envelope.message_id,
                    "message_type": envelope.message_type.value,
                },
                delay_ms=delay_ms,
            )
        except MessagingError as e:
            log_outcome(
                logger,
                "publish",
                message_id=envelope.message_id,
                exchange=exchange,
                routing_key=routing_key,
                outcome="failed",
                level=logging.ERROR,
                error=str(e),
            )
            raise
        log_outcome(
            logger,
            "publish",
            message_id=envelope.message_id,
            exchange=exchange,
            routing_key=routing_key,
            outcome="published",
            queues=len(queues),
            delay_ms=delay_ms,
        )
        return envelope

    async def send(self, envelope: MessageEnvelope) -> MessageEnvelope:
        """Publish to the demo exchange matching the envelope's type.

        DELAY envelopes go through the DelayScheduler instead.
        """
        try:
            exchange = _EXCHANGE_FOR_TYPE[envelope.message_type]
        except KeyError:
            raise InvalidEnvelopeError(
                "DELAY envelopes must be scheduled, not sent directly"
            ) from None
        return await self.publish(exchange, envelope)

    async def send_direct(
        self,
        content: str,
        routing_key: str = constants.DIRECT_ROUTING_KEY,
        *,
        sender: str = "DirectProducer",
        extra_data: Any = None,
    ) -> MessageEnvelope:
        envelope = MessageEnvelope.create(
            content,
            MessageType.DIRECT,
            routing_key=routing_key,
            sender=sender,
            extra_data=extra_data,
        )
        return await self.publish(constants.DIRECT_EXCHANGE, envelope)

    async def send_fanout(
        self,
        content: str,
        *,
        sender: str = "FanoutProducer",
        extra_data: Any = None,
    ) -> MessageEnvelope:
        envelope = MessageEnvelope.create(
            content, MessageType.FANOUT, sender=sender, extra_data=extra_data
        )
        return await self.publish(constants.FANOUT_EXCHANGE, envelope)

    async def send_topic(
        self,
        content: str,
        routing_key: str,
        *,
        sender: str = "TopicProducer",
        extra_data: Any = None,
    ) -> MessageEnvelope:
        envelope = MessageEnvelope.create(
            content,
            MessageType.TOPIC,
            routing_key=routing_key,
            sender=sender,
            extra_data=extra_data,
        )
        return await self.publish(constants.TOPIC_EXCHANGE, envelope)

    async def send_user_notification(
        self, user_id: str, notify_type: str, content: str
    ) -> MessageEnvelope:
        """Topic message on ``user.<notify_type>.send``."""
        return await self.send_topic(
            content,
            f"user.{notify_type}.send",
            sender="UserNotificationProducer",
            extra_data={"userId": user_id, "notifyType": notify_type, "action": "send"},
        )

    async def send_order_message(
        self, order_id: str, action: str, content: str
    ) -> MessageEnvelope:
        """Topic message on ``order.<action>.notify``."""
        return await self.send_topic(
            content,
            f"order.{action}.notify",
            sender="OrderProducer",
            extra_data={"orderId": order_id, "action": action},
        )
