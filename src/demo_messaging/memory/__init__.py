"""In-memory broker transport for tests and local runs."""

from __future__ import annotations

from .broker import InMemoryBroker, InMemoryDeliveryHandle

__all__ = [
    "InMemoryBroker",
    "InMemoryDeliveryHandle",
]
