"""Tests for BindingTable and the default topology."""

from __future__ import annotations

import pytest

from demo_messaging import constants
from demo_messaging.envelope import MessageType
from demo_messaging.exceptions import UnknownExchangeError
from demo_messaging.topology import (
    BindingTable,
    ExchangeBinding,
    ExchangeType,
    default_topology,
)


def test_default_topology_exchanges() -> None:
    table = default_topology()
    assert dict(table.exchanges) == {
        constants.DIRECT_EXCHANGE: ExchangeType.DIRECT,
        constants.FANOUT_EXCHANGE: ExchangeType.FANOUT,
        constants.TOPIC_EXCHANGE: ExchangeType.TOPIC,
        constants.DELAY_EXCHANGE: ExchangeType.DIRECT,
        constants.DEAD_LETTER_EXCHANGE: ExchangeType.DIRECT,
    }
    assert len(table) == 8
    assert table.delayed_exchanges == {constants.DELAY_EXCHANGE}
    assert constants.DEAD_LETTER_QUEUE in table.queues


def test_conflicting_exchange_types_rejected() -> None:
    with pytest.raises(ValueError, match="bound as both"):
        BindingTable(
            [
                ExchangeBinding("ex", ExchangeType.DIRECT, "q1", "k"),
                ExchangeBinding("ex", ExchangeType.TOPIC, "q2", "k.#"),
            ]
        )


def test_delayed_exchange_must_be_direct() -> None:
    with pytest.raises(ValueError, match="must be a bound direct exchange"):
        BindingTable(
            [ExchangeBinding("ex", ExchangeType.FANOUT, "q1")],
            delayed_exchanges=["ex"],
        )
    with pytest.raises(ValueError, match="must be a bound direct exchange"):
        BindingTable([], delayed_exchanges=["missing"])


def test_exchange_type_unknown_raises() -> None:
    table = default_topology()
    with pytest.raises(UnknownExchangeError) as exc:
        table.exchange_type("nope")
    assert exc.value.exchange == "nope"
    with pytest.raises(UnknownExchangeError):
        table.bindings_for("nope")


def test_bindings_for_and_of_type() -> None:
    table = default_topology()
    fanout = table.bindings_for(constants.FANOUT_EXCHANGE)
    assert {b.queue for b in fanout} == {
        constants.FANOUT_QUEUE_1,
        constants.FANOUT_QUEUE_2,
    }
    topic = table.bindings_of_type(ExchangeType.TOPIC)
    assert {b.pattern for b in topic} == {"user.#", "order.#", "#"}


@pytest.mark.parametrize(
    ("message_type", "expected"),
    [
        (MessageType.DIRECT, ExchangeType.DIRECT),
        (MessageType.FANOUT, ExchangeType.FANOUT),
        (MessageType.TOPIC, ExchangeType.TOPIC),
        (MessageType.DELAY, ExchangeType.DIRECT),
    ],
)
def test_exchange_type_for_message_type(
    message_type: MessageType, expected: ExchangeType
) -> None:
    assert ExchangeType.for_message_type(message_type) is expected
