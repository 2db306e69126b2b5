"""DeliveryConsumer: run queue handlers and settle each delivery exactly once."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import TYPE_CHECKING

from .exceptions import (
    DeadLetterError,
    HandlerRegistrationError,
    MessagingSerializationError,
)
from .outcome import Ack, DeliveryResult, DeliveryState, NackRequeue
from .retry import RetryPolicy
from .serialization import EnvelopeSerializer
from .structured_logging import log_outcome

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from .dead_letter import DeadLetterHandler
    from .envelope import MessageEnvelope
    from .idempotency import IdempotencyFilter
    from .ports import Delivery, IBrokerTransport

    DeliveryHandler = Callable[[MessageEnvelope], Awaitable[Ack | NackRequeue | None]]

logger = logging.getLogger("demo_messaging.consumer")


@dataclass(frozen=True)
class QueueRegistration:
    queue: str
    handler: DeliveryHandler
    receiver: str | None = None
    concurrency: int = 1


class DeliveryConsumer:
    """Dispatches deliveries to handlers registered per queue.

    Handlers receive the decoded envelope and return :class:`Ack`,
    :class:`NackRequeue` or None (treated as Ack). A raised exception is a
    nack. The consumer turns that outcome into exactly one ack or nack on the
    broker handle and logs one structured line per terminal outcome.

    Redelivery is governed by ``retry_policy``: failed deliveries are requeued
    until the policy's attempt ceiling, then handed to ``dead_letter`` (and the
    original acked) or, without a dead-letter handler, rejected. Attempts are
    counted per queue and envelope id in this process.

    Usage::

        consumer = DeliveryConsumer(broker, retry_policy=RetryPolicy(max_attempts=3))
        consumer.register("demo.direct.queue", handle_direct, receiver="DirectConsumer")
        await consumer.start()
    """

    def __init__(
        self,
        transport: IBrokerTransport,
        *,
        serializer: EnvelopeSerializer | None = None,
        retry_policy: RetryPolicy | None = None,
        dead_letter: DeadLetterHandler | None = None,
        idempotency: IdempotencyFilter | None = None,
        max_concurrency: int = 10,
    ) -> None:
        """Configure the consumer.

        Args:
            transport: Broker to consume from.
            serializer: Decoder for delivery bodies; default EnvelopeSerializer().
            retry_policy: Redelivery ceiling and backoff; default RetryPolicy().
            dead_letter: Destination for envelopes that exhausted the policy.
            idempotency: When set, envelopes already acked on a queue are
                acked again without running the handler.
            max_concurrency: Upper bound for per-queue concurrency.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._transport = transport
        self._serializer = serializer or EnvelopeSerializer()
        self._retry_policy = retry_policy or RetryPolicy()
        self._dead_letter = dead_letter
        self._idempotency = idempotency
        self._max_concurrency = max_concurrency
        self._registrations: dict[str, QueueRegistration] = {}
        self._attempts: dict[tuple[str, str], int] = {}
        self._running = False
        self.stats: Counter[DeliveryState] = Counter()

    @property
    def registrations(self) -> Mapping[str, QueueRegistration]:
        return MappingProxyType(self._registrations)

    @property
    def running(self) -> bool:
        return self._running

    def register(
        self,
        queue: str,
        handler: DeliveryHandler,
        *,
        receiver: str | None = None,
        concurrency: int = 1,
    ) -> None:
        """Register the handler for ``queue``; one handler per queue.

        ``concurrency`` is the number of deliveries processed at once; 1 keeps
        the queue's delivery order.
        """
        if self._running:
            raise HandlerRegistrationError("Cannot register handlers after start()")
        if queue in self._registrations:
            raise HandlerRegistrationError(f"Queue {queue!r} already has a handler")
        if not 1 <= concurrency <= self._max_concurrency:
            raise ValueError(
                f"concurrency must be between 1 and {self._max_concurrency}"
            )
        self._registrations[queue] = QueueRegistration(
            queue=queue, handler=handler, receiver=receiver, concurrency=concurrency
        )

    async def start(self) -> None:
        """Subscribe every registered queue on the transport."""
        if self._running:
            return
        self._running = True
        for registration in self._registrations.values():
            await self._transport.consume(
                registration.queue,
                partial(self.handle_delivery, registration.queue),
                prefetch_count=registration.concurrency,
            )
        logger.info(
            "DeliveryConsumer started for queues: %s", sorted(self._registrations)
        )

    async def stop(self) -> None:
        """Cancel the transport subscription of every registered queue."""
        if not self._running:
            return
        self._running = False
        for queue in self._registrations:
            await self._transport.cancel(queue)
        logger.info("DeliveryConsumer stopped")

    async def on_deliver(
        self, queue: str, envelope: MessageEnvelope, *, attempt: int = 1
    ) -> DeliveryResult:
        """Run the queue's handler on ``envelope`` and classify the outcome.

        Returns an ACKED result (with ``receiver`` recorded on the envelope)
        or a NACKED_REQUEUED result. Does not touch the broker.
        """
        registration = self._registrations.get(queue)
        if registration is None:
            raise HandlerRegistrationError(f"No handler registered for queue {queue!r}")
        try:
            outcome = await registration.handler(envelope)
        except Exception as e:  # noqa: BLE001
            return DeliveryResult(
                queue=queue,
                state=DeliveryState.NACKED_REQUEUED,
                envelope=envelope,
                attempt=attempt,
                reason=f"{type(e).__name__}: {e}",
                error=e,
            )
        if isinstance(outcome, NackRequeue):
            return DeliveryResult(
                queue=queue,
                state=DeliveryState.NACKED_REQUEUED,
                envelope=envelope,
                attempt=attempt,
                reason=outcome.reason,
            )
        receiver = outcome.receiver if isinstance(outcome, Ack) else None
        receiver = receiver or registration.receiver
        if receiver:
            envelope = envelope.received_by(receiver)
        return DeliveryResult(
            queue=queue,
            state=DeliveryState.ACKED,
            envelope=envelope,
            attempt=attempt,
        )

    async def handle_delivery(self, queue: str, delivery: Delivery) -> DeliveryResult:
        """Decode, process and settle one broker delivery."""
        try:
            envelope = self._serializer.deserialize(delivery.body)
        except MessagingSerializationError as e:
            await delivery.handle.nack(requeue=False)
            return self._finish(
                delivery,
                DeliveryResult(
                    queue=queue,
                    state=DeliveryState.DROPPED,
                    reason=f"undecodable body: {e}",
                    error=e,
                ),
            )

        if self._idempotency is not None and await self._idempotency.is_duplicate(
            queue, envelope.message_id
        ):
            await delivery.handle.ack()
            return self._finish(
                delivery,
                DeliveryResult(
                    queue=queue,
                    state=DeliveryState.ACKED,
                    envelope=envelope,
                    reason="duplicate",
                ),
            )

        key = (queue, envelope.message_id)
        attempt = self._attempts.get(key, 0) + 1
        result = await self.on_deliver(queue, envelope, attempt=attempt)

        if result.state is DeliveryState.ACKED:
            self._attempts.pop(key, None)
            await delivery.handle.ack()
            if self._idempotency is not None:
                await self._idempotency.mark_processed(queue, envelope.message_id)
            return self._finish(delivery, result)

        if self._retry_policy.should_retry(attempt):
            self._attempts[key] = attempt
            await self._retry_policy.wait_before_retry(attempt)
            await delivery.handle.nack(requeue=True)
            return self._finish(delivery, result)

        self._attempts.pop(key, None)
        return await self._give_up(delivery, result)

    async def _give_up(self, delivery: Delivery, result: DeliveryResult) -> DeliveryResult:
        assert result.envelope is not None  # noqa: S101
        reason = f"gave up after {result.attempt} attempt(s): {result.reason}"
        if self._dead_letter is not None:
            try:
                await self._dead_letter.route(
                    result.envelope,
                    reason,
                    result.error,
                    queue=result.queue,
                )
            except DeadLetterError:
                logger.exception(
                    "Dead-lettering envelope %s failed; rejecting it",
                    result.envelope.message_id,
                )
            else:
                await delivery.handle.ack()
                return self._finish(
                    delivery,
                    DeliveryResult(
                        queue=result.queue,
                        state=DeliveryState.DEAD_LETTERED,
                        envelope=result.envelope,
                        attempt=result.attempt,
                        reason=reason,
                        error=result.error,
                    ),
                )
        await delivery.handle.nack(requeue=False)
        return self._finish(
            delivery,
            DeliveryResult(
                queue=result.queue,
                state=DeliveryState.DROPPED,
                envelope=result.envelope,
                attempt=result.attempt,
                reason=reason,
                error=result.error,
            ),
        )

    def _finish(self, delivery: Delivery, result: DeliveryResult) -> DeliveryResult:
        self.stats[result.state] += 1
        level = logging.INFO
        if result.state is DeliveryState.NACKED_REQUEUED:
            level = logging.WARNING
        elif result.state in (DeliveryState.DROPPED, DeliveryState.DEAD_LETTERED):
            level = logging.ERROR
        log_outcome(
            logger,
            "delivery",
            message_id=result.message_id,
            exchange=delivery.exchange,
            routing_key=delivery.routing_key,
            outcome=result.state.value,
            level=level,
            queue=result.queue,
            attempt=result.attempt,
            receiver=result.envelope.receiver if result.envelope else None,
            reason=result.reason or None,
        )
        return result
