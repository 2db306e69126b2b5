"""Declare a BindingTable's exchanges, queues and bindings on a channel."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aio_pika

from ..topology import ExchangeType

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractExchange

    from ..topology import BindingTable

logger = logging.getLogger("demo_messaging.rabbitmq")

DELAYED_EXCHANGE_TYPE = "x-delayed-message"

_AMQP_TYPES = {
    ExchangeType.DIRECT: aio_pika.ExchangeType.DIRECT,
    ExchangeType.FANOUT: aio_pika.ExchangeType.FANOUT,
    ExchangeType.TOPIC: aio_pika.ExchangeType.TOPIC,
}


async def declare_topology(
    channel: AbstractChannel,
    table: BindingTable,
    *,
    delayed_exchange_plugin: bool = True,
) -> dict[str, AbstractExchange]:
    """Declare every exchange and queue of ``table`` as durable and bind them.

    With ``delayed_exchange_plugin`` the table's delayed exchanges are declared
    as ``x-delayed-message`` exchanges that route like ``direct`` once the
    ``x-delay`` header has elapsed. Without it they are plain direct exchanges.

    Returns the declared exchanges by name.
    """
    exchanges: dict[str, AbstractExchange] = {}
    for name, exchange_type in table.exchanges.items():
        if delayed_exchange_plugin and table.is_delayed(name):
            exchanges[name] = await channel.declare_exchange(
                name,
                DELAYED_EXCHANGE_TYPE,
                durable=True,
                arguments={"x-delayed-type": exchange_type.value},
            )
        else:
            exchanges[name] = await channel.declare_exchange(
                name, _AMQP_TYPES[exchange_type], durable=True
            )
    for binding in table:
        queue = await channel.declare_queue(binding.queue, durable=True)
        await queue.bind(exchanges[binding.exchange], routing_key=binding.pattern)
    logger.info(
        "Declared %d exchanges and %d queues", len(exchanges), len(table.queues)
    )
    return exchanges
