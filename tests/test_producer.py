"""Tests for MessageProducer."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from demo_messaging import constants
from demo_messaging.envelope import MessageEnvelope, MessageType
from demo_messaging.exceptions import (
    InvalidEnvelopeError,
    MessagingConnectionError,
    NoMatchingQueueError,
    UnknownExchangeError,
)
from demo_messaging.memory import InMemoryBroker
from demo_messaging.producer import MessageProducer
from demo_messaging.routing import ExchangeRouter
from demo_messaging.topology import BindingTable, ExchangeBinding, ExchangeType


@pytest.mark.asyncio
async def test_send_direct(producer: MessageProducer, broker: InMemoryBroker) -> None:
    env = await producer.send_direct("hello")
    assert env.message_type is MessageType.DIRECT
    assert env.routing_key == constants.DIRECT_ROUTING_KEY
    assert env.sender == "DirectProducer"
    exchange, key, body, headers = broker.get_published()[-1]
    assert (exchange, key) == (constants.DIRECT_EXCHANGE, "demo.direct")
    assert headers == {"message_id": env.message_id, "message_type": "DIRECT"}
    assert json.loads(body)["content"] == "hello"
    assert broker.depth(constants.DIRECT_QUEUE) == 1


@pytest.mark.asyncio
async def test_send_direct_unbound_key_fails_before_publish(
    producer: MessageProducer, broker: InMemoryBroker
) -> None:
    with pytest.raises(NoMatchingQueueError):
        await producer.send_direct("hello", routing_key="nowhere")
    assert broker.get_published() == []


@pytest.mark.asyncio
async def test_send_fanout_reaches_both_queues(
    producer: MessageProducer, broker: InMemoryBroker
) -> None:
    env = await producer.send_fanout("broadcast")
    assert env.routing_key is None
    assert broker.depth(constants.FANOUT_QUEUE_1) == 1
    assert broker.depth(constants.FANOUT_QUEUE_2) == 1


@pytest.mark.asyncio
async def test_send_user_notification(
    producer: MessageProducer, broker: InMemoryBroker
) -> None:
    env = await producer.send_user_notification("u-1", "sms", "code 1234")
    assert env.routing_key == "user.sms.send"
    assert env.extra_data == {"userId": "u-1", "notifyType": "sms", "action": "send"}
    assert broker.depth(constants.TOPIC_QUEUE_USER) == 1
    assert broker.depth(constants.TOPIC_QUEUE_ALL) == 1
    assert broker.depth(constants.TOPIC_QUEUE_ORDER) == 0


@pytest.mark.asyncio
async def test_send_order_message(
    producer: MessageProducer, broker: InMemoryBroker
) -> None:
    env = await producer.send_order_message("o-9", "payment", "paid")
    assert env.routing_key == "order.payment.notify"
    assert env.extra_data == {"orderId": "o-9", "action": "payment"}
    assert broker.depth(constants.TOPIC_QUEUE_ORDER) == 1


@pytest.mark.asyncio
async def test_topic_without_match_is_not_an_error() -> None:
    table = BindingTable(
        [ExchangeBinding("t.ex", ExchangeType.TOPIC, "q.user", "user.#")]
    )
    only_user = MessageProducer(InMemoryBroker(table), ExchangeRouter(table))
    env = MessageEnvelope.create("x", MessageType.TOPIC, routing_key="order.create")
    assert await only_user.publish("t.ex", env) is env


@pytest.mark.asyncio
async def test_check_route_type_mismatch(producer: MessageProducer) -> None:
    env = MessageEnvelope.create("x", MessageType.FANOUT)
    with pytest.raises(InvalidEnvelopeError, match="cannot be sent"):
        producer.check_route(constants.DIRECT_EXCHANGE, env)


@pytest.mark.asyncio
async def test_check_route_missing_routing_key(producer: MessageProducer) -> None:
    env = MessageEnvelope.create("x", MessageType.TOPIC)
    with pytest.raises(InvalidEnvelopeError, match="needs a routing key"):
        producer.check_route(constants.TOPIC_EXCHANGE, env)


@pytest.mark.asyncio
async def test_check_route_unknown_exchange(producer: MessageProducer) -> None:
    env = MessageEnvelope.create("x", MessageType.DIRECT, routing_key="k")
    with pytest.raises(UnknownExchangeError):
        producer.check_route("ghost.exchange", env)


@pytest.mark.asyncio
async def test_send_dispatches_by_type(
    producer: MessageProducer, broker: InMemoryBroker
) -> None:
    env = MessageEnvelope.create("x", MessageType.TOPIC, routing_key="order.create.notify")
    await producer.send(env)
    assert broker.get_published()[-1][0] == constants.TOPIC_EXCHANGE
    with pytest.raises(InvalidEnvelopeError, match="must be scheduled"):
        await producer.send(MessageEnvelope.create("x", MessageType.DELAY))


@pytest.mark.asyncio
async def test_transport_failure_propagates(router: ExchangeRouter) -> None:
    transport = AsyncMock()
    transport.publish.side_effect = MessagingConnectionError("broker down")
    producer = MessageProducer(transport, router)
    with pytest.raises(MessagingConnectionError, match="broker down"):
        await producer.send_direct("hello")
