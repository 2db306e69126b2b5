"""InMemoryBroker: IBrokerTransport with exchange routing and ack/nack for tests."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..exceptions import MessagingError, NoMatchingQueueError, SchedulingError
from ..ports import Delivery, IBrokerTransport
from ..routing import ExchangeRouter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from ..topology import BindingTable

logger = logging.getLogger("demo_messaging.memory")


@dataclass
class _StoredMessage:
    body: bytes
    exchange: str
    routing_key: str
    headers: dict[str, Any] = field(default_factory=dict)
    delivery_count: int = 0


class InMemoryDeliveryHandle:
    """Settles one in-memory delivery; a second settlement raises."""

    def __init__(self, broker: InMemoryBroker, queue: str, message: _StoredMessage) -> None:
        self._broker = broker
        self._queue = queue
        self._message = message
        self.settled: str | None = None

    def _settle(self, how: str) -> None:
        if self.settled is not None:
            raise MessagingError(
                f"Delivery on {self._queue!r} already settled ({self.settled})"
            )
        self.settled = how

    async def ack(self) -> None:
        self._settle("ack")
        self._broker._record_ack(self._queue, self._message)

    async def nack(self, requeue: bool = True) -> None:
        self._settle("requeue" if requeue else "reject")
        if requeue:
            self._broker._requeue(self._queue, self._message)
        else:
            self._broker._record_reject(self._queue, self._message)


class InMemoryBroker(IBrokerTransport):
    """Broker stand-in: exchanges route through :class:`ExchangeRouter` into asyncio queues.

    ``consume`` starts ``prefetch_count`` worker tasks per queue; each worker
    awaits its callback before taking the next message, so a prefetch of 1
    gives in-order delivery. A nack with requeue puts the message at the tail
    of its queue flagged as redelivered. Per-message delays are not supported;
    the delay scheduler holds envelopes itself for this broker.
    """

    supports_delay = False

    def __init__(self, topology: BindingTable, *, mandatory: bool = True) -> None:
        """Args:
        topology: Static binding table used for routing.
        mandatory: Raise NoMatchingQueueError when a direct publish is
            unroutable (otherwise the message is dropped with a warning).
        """
        self._router = ExchangeRouter(topology)
        self._mandatory = mandatory
        self._queues: dict[str, asyncio.Queue[_StoredMessage]] = {}
        self._published: list[tuple[str, str, bytes, dict[str, Any]]] = []
        self._acked: list[tuple[str, bytes]] = []
        self._rejected: list[tuple[str, bytes]] = []
        self._workers: dict[str, list[asyncio.Task[None]]] = {}
        self._in_flight = 0
        self._closed = False

    def _queue(self, name: str) -> asyncio.Queue[_StoredMessage]:
        queue = self._queues.get(name)
        if queue is None:
            queue = self._queues[name] = asyncio.Queue()
        return queue

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        headers: Mapping[str, Any] | None = None,
        delay_ms: int | None = None,
    ) -> None:
        """Route ``body`` to every bound queue."""
        if self._closed:
            raise MessagingError("InMemoryBroker is closed")
        if delay_ms is not None:
            raise SchedulingError("InMemoryBroker does not support per-message delays")
        try:
            queues = self._router.route_to_exchange(exchange, routing_key)
        except NoMatchingQueueError:
            if self._mandatory:
                raise
            logger.warning("Dropped unroutable message %s/%s", exchange, routing_key)
            return
        hdrs = dict(headers or {})
        self._published.append((exchange, routing_key, body, hdrs))
        for name in sorted(queues):
            self._queue(name).put_nowait(
                _StoredMessage(body=body, exchange=exchange, routing_key=routing_key, headers=hdrs)
            )

    async def consume(
        self,
        queue: str,
        on_delivery: Callable[[Delivery], Awaitable[None]],
        *,
        prefetch_count: int = 1,
    ) -> None:
        if prefetch_count < 1:
            raise ValueError("prefetch_count must be >= 1")
        if queue in self._workers:
            raise MessagingError(f"Queue {queue!r} already has a consumer")
        self._workers[queue] = [
            asyncio.create_task(
                self._worker(queue, on_delivery), name=f"consume:{queue}:{n}"
            )
            for n in range(prefetch_count)
        ]
        logger.debug("Consuming %s with %d worker(s)", queue, prefetch_count)

    async def _worker(
        self, name: str, on_delivery: Callable[[Delivery], Awaitable[None]]
    ) -> None:
        queue = self._queue(name)
        while True:
            message = await queue.get()
            self._in_flight += 1
            handle = InMemoryDeliveryHandle(self, name, message)
            try:
                await on_delivery(
                    Delivery(
                        body=message.body,
                        handle=handle,
                        queue=name,
                        exchange=message.exchange,
                        routing_key=message.routing_key,
                        redelivered=message.delivery_count > 0,
                        headers=dict(message.headers),
                    )
                )
            except Exception:
                logger.exception("Consumer callback failed on %s", name)
            finally:
                if handle.settled is None:
                    logger.warning("Delivery on %s left unsettled; requeueing", name)
                    await handle.nack(requeue=True)
                self._in_flight -= 1
                queue.task_done()

    def _requeue(self, name: str, message: _StoredMessage) -> None:
        message.delivery_count += 1
        self._queue(name).put_nowait(message)

    def _record_ack(self, name: str, message: _StoredMessage) -> None:
        self._acked.append((name, message.body))

    def _record_reject(self, name: str, message: _StoredMessage) -> None:
        self._rejected.append((name, message.body))

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until every consumed queue is empty and no delivery is in flight.

        Deliveries may publish to other queues (dead-lettering, republishing),
        so queues are joined again until a pass finds nothing left to do.
        """
        await asyncio.wait_for(self._settle(), timeout=timeout)

    async def _settle(self) -> None:
        while True:
            await asyncio.gather(*(self._queue(name).join() for name in self._workers))
            idle = all(self._queue(name).empty() for name in self._workers)
            if idle and self._in_flight == 0:
                return

    async def cancel(self, queue: str) -> None:
        """Cancel the workers of ``queue``; an in-flight delivery is requeued."""
        tasks = self._workers.pop(queue, [])
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if tasks:
            logger.debug("Stopped consuming %s", queue)

    async def health_check(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True
        for queue in list(self._workers):
            await self.cancel(queue)

    # --- Test helpers ---

    def get_published(self) -> list[tuple[str, str, bytes, dict[str, Any]]]:
        """All routed publishes as (exchange, routing_key, body, headers), in order."""
        return list(self._published)

    def depth(self, queue: str) -> int:
        """Messages waiting on ``queue`` (excludes in-flight deliveries)."""
        return self._queue(queue).qsize()

    @property
    def acked(self) -> list[tuple[str, bytes]]:
        return list(self._acked)

    @property
    def rejected(self) -> list[tuple[str, bytes]]:
        return list(self._rejected)

    @property
    def router(self) -> ExchangeRouter:
        return self._router
