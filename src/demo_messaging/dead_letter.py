"""DeadLetterHandler: park envelopes that exhausted their redeliveries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import constants
from .exceptions import DeadLetterError
from .serialization import EnvelopeSerializer
from .structured_logging import log_outcome

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from .envelope import MessageEnvelope
    from .ports import IBrokerTransport

logger = logging.getLogger("demo_messaging.dead_letter")


class DeadLetterHandler:
    """Routes envelopes that fail after max redeliveries to a dead-letter destination.

    With a transport, the envelope is republished unchanged (same id) to the
    dead-letter exchange with headers describing the failure. An optional
    async ``on_dead_letter`` callback is invoked first, e.g. for alerting.
    At least one of the two must be configured.
    """

    def __init__(
        self,
        transport: IBrokerTransport | None = None,
        *,
        serializer: EnvelopeSerializer | None = None,
        exchange: str = constants.DEAD_LETTER_EXCHANGE,
        routing_key: str = constants.DEAD_LETTER_ROUTING_KEY,
        on_dead_letter: (
            Callable[
                [MessageEnvelope, str, BaseException | None], Coroutine[Any, Any, None]
            ]
            | None
        ) = None,
    ) -> None:
        if transport is None and on_dead_letter is None:
            raise ValueError("DeadLetterHandler needs a transport or an on_dead_letter callback")
        self._transport = transport
        self._serializer = serializer or EnvelopeSerializer()
        self._exchange = exchange
        self._routing_key = routing_key
        self._on_dead_letter = on_dead_letter

    async def route(
        self,
        envelope: MessageEnvelope,
        reason: str,
        exception: BaseException | None = None,
        *,
        queue: str | None = None,
    ) -> None:
        """Send the envelope to the dead-letter destination.

        Raises:
            DeadLetterError: the callback or the republish failed; the caller
                should reject the original delivery instead of acking it.
        """
        try:
            if self._on_dead_letter is not None:
                await self._on_dead_letter(envelope, reason, exception)
            if self._transport is not None:
                await self._transport.publish(
                    self._exchange,
                    self._routing_key,
                    self._serializer.serialize(envelope),
                    headers={
                        "x-dead-letter-reason": reason[:255],
                        "x-original-queue": queue or "",
                        "message_id": envelope.message_id,
                    },
                )
        except Exception as e:  # noqa: BLE001
            raise DeadLetterError(
                f"Could not dead-letter envelope: {type(e).__name__}: {e}",
                message_id=envelope.message_id,
            ) from e
        log_outcome(
            logger,
            "dead_letter",
            message_id=envelope.message_id,
            exchange=self._exchange,
            routing_key=self._routing_key,
            outcome="dead_lettered",
            level=logging.WARNING,
            queue=queue,
            reason=reason,
        )
