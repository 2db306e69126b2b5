"""JSON log entries for publishes and terminal delivery outcomes."""

from __future__ import annotations

import json
import logging
from typing import Any


def log_outcome(
    logger: logging.Logger,
    event: str,
    *,
    message_id: str | None,
    exchange: str | None,
    routing_key: str | None,
    outcome: str,
    level: int = logging.INFO,
    **extra: Any,
) -> None:
    """Emit one JSON line with envelope id, exchange, routing key and outcome."""
    if not logger.isEnabledFor(level):
        return
    entry: dict[str, Any] = {
        "event": event,
        "message_id": message_id,
        "exchange": exchange,
        "routing_key": routing_key,
        "outcome": outcome,
    }
    entry.update({k: v for k, v in extra.items() if v is not None})
    logger.log(level, json.dumps(entry, default=str, ensure_ascii=False))
