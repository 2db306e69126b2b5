"""Tests for messaging exceptions."""

from __future__ import annotations

import pytest

from demo_messaging.exceptions import (
    DeadLetterError,
    HandlerRegistrationError,
    InvalidEnvelopeError,
    MessagingConnectionError,
    MessagingError,
    MessagingSerializationError,
    NoMatchingQueueError,
    RoutingError,
    SchedulingError,
    UnknownExchangeError,
)


@pytest.mark.parametrize(
    "exc_type",
    [
        DeadLetterError,
        HandlerRegistrationError,
        InvalidEnvelopeError,
        MessagingConnectionError,
        MessagingSerializationError,
        RoutingError,
        SchedulingError,
    ],
)
def test_all_errors_are_messaging_errors(exc_type: type[Exception]) -> None:
    assert issubclass(exc_type, MessagingError)


def test_routing_error_subclasses() -> None:
    assert issubclass(UnknownExchangeError, RoutingError)
    assert issubclass(NoMatchingQueueError, RoutingError)


def test_no_matching_queue_error_message() -> None:
    e = NoMatchingQueueError("demo.direct.exchange", "nope", message_id="m-1")
    assert e.message_id == "m-1"
    assert "'nope'" in str(e)
    assert "demo.direct.exchange" in str(e)
    assert "direct exchanges" in str(NoMatchingQueueError(None, "k"))


def test_dead_letter_and_scheduling_errors_carry_message_id() -> None:
    e = DeadLetterError("failed", message_id="mid-1")
    assert e.message_id == "mid-1"
    assert "failed" in str(e)
    assert SchedulingError("later", message_id="mid-2").message_id == "mid-2"
