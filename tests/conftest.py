"""Shared fixtures for demo-messaging tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from demo_messaging.memory import InMemoryBroker
from demo_messaging.producer import MessageProducer
from demo_messaging.retry import RetryPolicy
from demo_messaging.routing import ExchangeRouter
from demo_messaging.topology import BindingTable, default_topology


@pytest.fixture
def topology() -> BindingTable:
    return default_topology()


@pytest.fixture
def router(topology: BindingTable) -> ExchangeRouter:
    return ExchangeRouter(topology)


@pytest_asyncio.fixture
async def broker(topology: BindingTable) -> AsyncIterator[InMemoryBroker]:
    b = InMemoryBroker(topology)
    yield b
    await b.close()


@pytest.fixture
def producer(broker: InMemoryBroker, router: ExchangeRouter) -> MessageProducer:
    return MessageProducer(broker, router)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Bounded redelivery without backoff waits."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)
