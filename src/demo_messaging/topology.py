"""Exchange bindings: the static routing table built once at startup."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from . import constants
from .envelope import MessageType
from .exceptions import UnknownExchangeError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping


class ExchangeType(str, Enum):
    """AMQP exchange kinds supported by the router."""

    DIRECT = "direct"
    FANOUT = "fanout"
    TOPIC = "topic"

    @classmethod
    def for_message_type(cls, message_type: MessageType) -> ExchangeType:
        """Exchange kind that routes envelopes of ``message_type``.

        Delayed envelopes are routed as direct messages once released.
        """
        if message_type is MessageType.FANOUT:
            return cls.FANOUT
        if message_type is MessageType.TOPIC:
            return cls.TOPIC
        return cls.DIRECT


@dataclass(frozen=True)
class ExchangeBinding:
    """One queue bound to one exchange with a binding pattern.

    ``pattern`` is the exact routing key for direct exchanges, a wildcard
    pattern for topic exchanges and ignored for fanout exchanges.
    """

    exchange: str
    exchange_type: ExchangeType
    queue: str
    pattern: str = ""


class BindingTable:
    """Immutable set of bindings, passed by reference to the router and transports.

    Constructed once during process initialisation; nothing mutates it
    afterwards, so lookups need no locking.
    """

    def __init__(
        self,
        bindings: Iterable[ExchangeBinding],
        *,
        delayed_exchanges: Iterable[str] = (),
    ) -> None:
        self._bindings: tuple[ExchangeBinding, ...] = tuple(bindings)
        exchanges: dict[str, ExchangeType] = {}
        for binding in self._bindings:
            known = exchanges.setdefault(binding.exchange, binding.exchange_type)
            if known is not binding.exchange_type:
                raise ValueError(
                    f"Exchange {binding.exchange!r} bound as both "
                    f"{known.value} and {binding.exchange_type.value}"
                )
        self._exchanges: Mapping[str, ExchangeType] = MappingProxyType(exchanges)
        self._delayed = frozenset(delayed_exchanges)
        for name in self._delayed:
            if exchanges.get(name) is not ExchangeType.DIRECT:
                raise ValueError(f"Delayed exchange {name!r} must be a bound direct exchange")

    def __iter__(self) -> Iterator[ExchangeBinding]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    @property
    def bindings(self) -> tuple[ExchangeBinding, ...]:
        return self._bindings

    @property
    def exchanges(self) -> Mapping[str, ExchangeType]:
        """Exchange name -> exchange type."""
        return self._exchanges

    @property
    def queues(self) -> frozenset[str]:
        return frozenset(b.queue for b in self._bindings)

    @property
    def delayed_exchanges(self) -> frozenset[str]:
        return self._delayed

    def exchange_type(self, exchange: str) -> ExchangeType:
        try:
            return self._exchanges[exchange]
        except KeyError:
            raise UnknownExchangeError(exchange) from None

    def is_delayed(self, exchange: str) -> bool:
        return exchange in self._delayed

    def bindings_for(self, exchange: str) -> tuple[ExchangeBinding, ...]:
        """Bindings of one exchange; raises UnknownExchangeError if undeclared."""
        self.exchange_type(exchange)
        return tuple(b for b in self._bindings if b.exchange == exchange)

    def bindings_of_type(self, exchange_type: ExchangeType) -> tuple[ExchangeBinding, ...]:
        return tuple(b for b in self._bindings if b.exchange_type is exchange_type)


def default_topology() -> BindingTable:
    """Direct, fanout, topic, delay and dead-letter wiring of the demo backend."""
    direct = ExchangeType.DIRECT
    fanout = ExchangeType.FANOUT
    topic = ExchangeType.TOPIC
    return BindingTable(
        [
            ExchangeBinding(
                constants.DIRECT_EXCHANGE,
                direct,
                constants.DIRECT_QUEUE,
                constants.DIRECT_ROUTING_KEY,
            ),
            ExchangeBinding(constants.FANOUT_EXCHANGE, fanout, constants.FANOUT_QUEUE_1),
            ExchangeBinding(constants.FANOUT_EXCHANGE, fanout, constants.FANOUT_QUEUE_2),
            ExchangeBinding(
                constants.TOPIC_EXCHANGE,
                topic,
                constants.TOPIC_QUEUE_USER,
                constants.TOPIC_PATTERN_USER,
            ),
            ExchangeBinding(
                constants.TOPIC_EXCHANGE,
                topic,
                constants.TOPIC_QUEUE_ORDER,
                constants.TOPIC_PATTERN_ORDER,
            ),
            ExchangeBinding(
                constants.TOPIC_EXCHANGE,
                topic,
                constants.TOPIC_QUEUE_ALL,
                constants.TOPIC_PATTERN_ALL,
            ),
            ExchangeBinding(
                constants.DELAY_EXCHANGE,
                direct,
                constants.DELAY_QUEUE,
                constants.DELAY_ROUTING_KEY,
            ),
            ExchangeBinding(
                constants.DEAD_LETTER_EXCHANGE,
                direct,
                constants.DEAD_LETTER_QUEUE,
                constants.DEAD_LETTER_ROUTING_KEY,
            ),
        ],
        delayed_exchanges=[constants.DELAY_EXCHANGE],
    )
