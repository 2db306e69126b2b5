"""DelayScheduler: defer an envelope's visibility, then route it as a direct message.

Two strategies, picked from the transport:

* **Broker-held** (``transport.supports_delay``): the delay travels with the
  publish as the ``x-delay`` header of a delayed-message exchange and the
  broker releases the message when due.
* **Process-held**: the scheduler keeps the envelope in an asyncio timer and
  publishes it to the delay exchange once the delay has elapsed.

Either way the envelope reaches its queue no earlier than ``delay``
milliseconds after :meth:`DelayScheduler.schedule` returns. There is no
per-envelope cancellation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from . import constants
from .envelope import MessageEnvelope, MessageType
from .exceptions import MessagingError, SchedulingError
from .topology import ExchangeType

if TYPE_CHECKING:
    from .producer import MessageProducer

logger = logging.getLogger("demo_messaging.delay")

EXPECTED_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class DelayScheduler:
    """Schedules DELAY envelopes on the delay exchange.

    A missing, zero or negative delay is replaced by ``default_delay_ms``
    (5 s by default) on every call, so ``delay=0`` never means "now".
    """

    def __init__(
        self,
        producer: MessageProducer,
        *,
        exchange: str = constants.DELAY_EXCHANGE,
        default_routing_key: str = constants.DELAY_ROUTING_KEY,
        default_delay_ms: int = constants.DEFAULT_DELAY_MS,
    ) -> None:
        if default_delay_ms < 1:
            raise ValueError("default_delay_ms must be >= 1")
        self._producer = producer
        self._exchange = exchange
        self._default_routing_key = default_routing_key
        self._default_delay_ms = default_delay_ms
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def default_delay_ms(self) -> int:
        return self._default_delay_ms

    @property
    def pending_count(self) -> int:
        """Envelopes held in-process and not yet released."""
        return len(self._pending)

    @property
    def broker_held(self) -> bool:
        return bool(self._producer.transport.supports_delay)

    def effective_delay(self, delay: int | None) -> int:
        if delay is None or delay <= 0:
            return self._default_delay_ms
        return delay

    async def schedule(self, envelope: MessageEnvelope) -> MessageEnvelope:
        """Schedule ``envelope`` for delivery after its delay.

        The envelope is sealed as a DELAY message with its routing key and
        effective delay filled in; that sealed envelope is returned.

        Raises:
            SchedulingError: no queue is bound for the routing key, the
                envelope cannot be encoded, no event loop is running, or the
                broker rejected the delay.
        """
        delay = self.effective_delay(envelope.delay)
        sealed = envelope.model_copy(
            update={
                "message_type": MessageType.DELAY,
                "routing_key": envelope.routing_key or self._default_routing_key,
                "delay": delay,
            }
        )
        try:
            self._producer.router.route(
                ExchangeType.DIRECT,
                sealed.routing_key or "",
                sealed,
                exchange=self._exchange,
            )
            if self.broker_held:
                await self._producer.publish(self._exchange, sealed, delay_ms=delay)
            else:
                # Fail now rather than when the timer fires.
                self._producer.serializer.serialize(sealed)
                self._hold(sealed, delay)
        except SchedulingError:
            raise
        except MessagingError as e:
            raise SchedulingError(
                f"Could not schedule envelope {sealed.message_id}: {e}",
                message_id=sealed.message_id,
            ) from e
        logger.info(
            "Scheduled delayed envelope %s on %s/%s in %dms (%s)",
            sealed.message_id,
            self._exchange,
            sealed.routing_key,
            delay,
            "broker" if self.broker_held else "process",
        )
        return sealed

    def _hold(self, envelope: MessageEnvelope, delay_ms: int) -> None:
        try:
            task = asyncio.get_running_loop().create_task(
                self._release_later(envelope, delay_ms),
                name=f"delay:{envelope.message_id}",
            )
        except RuntimeError as e:
            raise SchedulingError(
                "No running event loop to hold the delayed envelope",
                message_id=envelope.message_id,
            ) from e
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _release_later(self, envelope: MessageEnvelope, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        try:
            await self._producer.publish(self._exchange, envelope)
        except MessagingError:
            logger.exception(
                "Failed to release delayed envelope %s after %dms",
                envelope.message_id,
                delay_ms,
            )

    async def stop(self, *, drain: bool = False) -> None:
        """Stop the scheduler.

        With ``drain`` wait for every held envelope to be released; otherwise
        held envelopes are discarded.
        """
        pending = list(self._pending)
        if not pending:
            return
        if drain:
            await asyncio.gather(*pending)
            return
        logger.warning("Discarding %d held delayed envelope(s)", len(pending))
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def send_delay(
        self,
        content: str,
        delay_ms: int | None = None,
        *,
        sender: str = "DelayProducer",
        extra_data: Any = None,
    ) -> MessageEnvelope:
        envelope = MessageEnvelope.create(
            content,
            MessageType.DELAY,
            routing_key=self._default_routing_key,
            delay=self.effective_delay(delay_ms),
            sender=sender,
            extra_data=extra_data,
        )
        return await self.schedule(envelope)

    async def send_task_reminder(
        self, task_name: str, reminder_text: str, delay_ms: int
    ) -> MessageEnvelope:
        """Reminder for ``task_name`` delivered after ``delay_ms``."""
        delay = self.effective_delay(delay_ms)
        now = datetime.now()
        return await self.send_delay(
            f"Task reminder: {task_name} - {reminder_text}",
            delay,
            sender="TaskReminderProducer",
            extra_data={
                "taskName": task_name,
                "reminderText": reminder_text,
                "createTime": now.strftime(EXPECTED_TIME_FORMAT),
                "expectedExecuteTime": (now + timedelta(milliseconds=delay)).strftime(
                    EXPECTED_TIME_FORMAT
                ),
            },
        )

    async def send_order_timeout_cancel(
        self, order_id: str, timeout_ms: int
    ) -> MessageEnvelope:
        """Order timeout check for ``order_id`` delivered after ``timeout_ms``."""
        delay = self.effective_delay(timeout_ms)
        now = datetime.now()
        return await self.send_delay(
            f"Order timeout check: orderId={order_id}",
            delay,
            sender="OrderTimeoutProducer",
            extra_data={
                "orderId": order_id,
                "createTime": now.strftime(EXPECTED_TIME_FORMAT),
                "timeoutTime": (now + timedelta(milliseconds=delay)).strftime(
                    EXPECTED_TIME_FORMAT
                ),
            },
        )
