"""Integration tests against a real RabbitMQ (require testcontainers and Docker)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterator

import pytest
import pytest_asyncio

pytest.importorskip("testcontainers")
pytest.importorskip("pika")  # required by testcontainers.rabbitmq

from testcontainers.rabbitmq import RabbitMqContainer

from demo_messaging.bootstrap import MessagingApp, build_app
from demo_messaging.exceptions import NoMatchingQueueError
from demo_messaging.outcome import DeliveryState
from demo_messaging.settings import MessagingSettings

pytestmark = pytest.mark.integration


def _rabbitmq_url_from_params(params: object) -> str:
    """Build amqp URL from pika connection params."""
    host = getattr(params, "host", "localhost")
    port = getattr(params, "port", 5672)
    creds = getattr(params, "credentials", None)
    if creds is not None:
        user = getattr(creds, "username", "guest")
        pwd = getattr(creds, "password", "guest")
    else:
        user, pwd = "guest", "guest"
    return f"amqp://{user}:{pwd}@{host}:{port}/"


@pytest.fixture(scope="module")
def rabbitmq_url() -> Iterator[str]:
    with RabbitMqContainer("rabbitmq:3-management") as rabbit:
        yield _rabbitmq_url_from_params(rabbit.get_connection_params())


@pytest_asyncio.fixture
async def app(rabbitmq_url: str) -> AsyncIterator[MessagingApp]:
    # The stock image has no delayed-message plugin; the scheduler holds delays.
    settings = MessagingSettings(
        transport="rabbitmq",
        amqp_url=rabbitmq_url,
        delayed_exchange_plugin=False,
        default_delay_ms=200,
        redelivery_base_delay=0.0,
        redelivery_max_delay=0.0,
    )
    application = build_app(settings)
    await application.start()
    yield application
    await application.stop()


async def _wait_for(predicate: Callable[[], object], timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_direct_round_trip(app: MessagingApp) -> None:
    sent = await app.producer.send_direct("hello")
    await _wait_for(lambda: app.handlers.received("DirectConsumer"))
    (received,) = app.handlers.received("DirectConsumer")
    assert received.message_id == sent.message_id
    assert received.receiver == "DirectConsumer"
    assert app.consumer.stats[DeliveryState.ACKED] >= 1


@pytest.mark.asyncio
async def test_fanout_and_topic(app: MessagingApp) -> None:
    await app.producer.send_fanout("broadcast")
    await app.producer.send_user_notification("u-1", "email", "hi")
    await _wait_for(
        lambda: app.handlers.received("StatisticsService")
        and app.handlers.received("LogService")
        and app.handlers.received("UserService")
        and app.handlers.received("MonitorService")
    )


@pytest.mark.asyncio
async def test_delayed_message_arrives(app: MessagingApp) -> None:
    await app.scheduler.send_delay("later", 300)
    await asyncio.sleep(0.1)
    assert app.handlers.received("DelayConsumer") == []
    await _wait_for(lambda: app.handlers.received("DelayConsumer"))


@pytest.mark.asyncio
async def test_unroutable_direct_rejected(app: MessagingApp) -> None:
    with pytest.raises(NoMatchingQueueError):
        await app.producer.send_direct("lost", routing_key="no.such.key")
    with pytest.raises(NoMatchingQueueError):
        await app.transport.publish(
            "demo.direct.exchange", "no.such.key", b"{}"
        )


@pytest.mark.asyncio
async def test_health_check(app: MessagingApp) -> None:
    assert await app.transport.health_check() is True
