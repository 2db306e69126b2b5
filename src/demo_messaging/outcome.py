"""Delivery outcomes: what a handler returns instead of acking a channel."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .envelope import MessageEnvelope


@dataclass(frozen=True)
class Ack:
    """Processing succeeded; the delivery is consumed.

    ``receiver`` names the service that handled the envelope and is recorded
    on it. When None the registration's receiver is used.
    """

    receiver: str | None = None


@dataclass(frozen=True)
class NackRequeue:
    """Processing failed; return the envelope to its queue for redelivery."""

    reason: str = ""


class DeliveryState(str, Enum):
    """How a delivery was settled on the broker."""

    ACKED = "acked"
    NACKED_REQUEUED = "nacked_requeued"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"


@dataclass(frozen=True)
class DeliveryResult:
    """Terminal outcome of one delivery attempt."""

    queue: str
    state: DeliveryState
    envelope: MessageEnvelope | None = None
    attempt: int = 1
    reason: str = ""
    error: BaseException | None = None

    @property
    def message_id(self) -> str | None:
        return self.envelope.message_id if self.envelope is not None else None
