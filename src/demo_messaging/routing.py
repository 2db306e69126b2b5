"""ExchangeRouter: map a published envelope to the queues that must receive it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import NoMatchingQueueError, RoutingError
from .topology import ExchangeType

if TYPE_CHECKING:
    from .envelope import MessageEnvelope
    from .topology import BindingTable, ExchangeBinding

logger = logging.getLogger("demo_messaging.routing")


def topic_matches(pattern: str, routing_key: str) -> bool:
    """Return True if ``routing_key`` matches a topic binding ``pattern``.

    Both are dot-delimited. ``*`` matches exactly one segment, ``#`` matches
    zero or more segments. Literal segments compare exactly and
    case-sensitively; wildcards inside a segment (``us*``) are literals.
    """
    words = routing_key.split(".") if routing_key else []
    parts = pattern.split(".") if pattern else []

    # Positions in ``words`` reachable after consuming the pattern so far.
    reachable = {0}
    for part in parts:
        if part == "#":
            reachable = set(range(min(reachable), len(words) + 1))
        else:
            reachable = {
                i + 1
                for i in reachable
                if i < len(words) and (part == "*" or part == words[i])
            }
        if not reachable:
            return False
    return len(words) in reachable


class ExchangeRouter:
    """Pure routing over a static :class:`BindingTable`.

    Usage::

        router = ExchangeRouter(default_topology())
        router.route(ExchangeType.TOPIC, "user.email.send")
        # frozenset({"demo.topic.queue.user", "demo.topic.queue.all"})
    """

    def __init__(self, table: BindingTable) -> None:
        self._table = table

    @property
    def table(self) -> BindingTable:
        return self._table

    def route(
        self,
        exchange_type: ExchangeType,
        routing_key: str,
        envelope: MessageEnvelope | None = None,
        *,
        exchange: str | None = None,
    ) -> frozenset[str]:
        """Return the queue names that receive a message.

        Args:
            exchange_type: Routing rule to apply.
            routing_key: Key of the published message (ignored for fanout).
            envelope: The message being routed; only used for error context.
            exchange: Restrict routing to one exchange. Its declared type must
                equal ``exchange_type``. When omitted, every binding of that
                type is considered.

        Raises:
            NoMatchingQueueError: direct routing found no bound queue.
            UnknownExchangeError: ``exchange`` is not declared.
            RoutingError: ``exchange`` is declared with a different type.
        """
        bindings = self._candidates(exchange_type, exchange)
        queues: frozenset[str]
        if exchange_type is ExchangeType.DIRECT:
            queues = frozenset(b.queue for b in bindings if b.pattern == routing_key)
            if not queues:
                raise NoMatchingQueueError(
                    exchange,
                    routing_key,
                    envelope.message_id if envelope is not None else None,
                )
        elif exchange_type is ExchangeType.FANOUT:
            queues = frozenset(b.queue for b in bindings)
        else:
            queues = frozenset(
                b.queue for b in bindings if topic_matches(b.pattern, routing_key)
            )
        logger.debug(
            "Routed %s/%s (%s) -> %s",
            exchange or "*",
            routing_key,
            exchange_type.value,
            sorted(queues),
        )
        return queues

    def route_to_exchange(
        self,
        exchange: str,
        routing_key: str,
        envelope: MessageEnvelope | None = None,
    ) -> frozenset[str]:
        """Route through a named exchange, taking its type from the table."""
        exchange_type = self._table.exchange_type(exchange)
        return self.route(exchange_type, routing_key, envelope, exchange=exchange)

    def _candidates(
        self, exchange_type: ExchangeType, exchange: str | None
    ) -> tuple[ExchangeBinding, ...]:
        if exchange is None:
            return self._table.bindings_of_type(exchange_type)
        declared = self._table.exchange_type(exchange)
        if declared is not exchange_type:
            raise RoutingError(
                f"Exchange {exchange!r} is {declared.value}, "
                f"cannot route as {exchange_type.value}"
            )
        return self._table.bindings_for(exchange)
