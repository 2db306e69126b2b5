"""RabbitMQ transport built on aio-pika."""

from __future__ import annotations

from .connection import RabbitMQConnectionManager
from .topology import declare_topology
from .transport import RabbitMQTransport

__all__ = [
    "RabbitMQConnectionManager",
    "RabbitMQTransport",
    "declare_topology",
]
