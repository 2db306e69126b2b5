"""Run a short demo: one message per exchange pattern plus a delayed one."""

from __future__ import annotations

import asyncio
import logging

from . import constants
from .bootstrap import build_app, configure_logging
from .settings import MessagingSettings, get_settings

logger = logging.getLogger("demo_messaging")


async def run_demo(settings: MessagingSettings) -> None:
    app = build_app(settings)
    await app.start()
    try:
        await app.producer.send_direct("hello")
        await app.producer.send_fanout("system maintenance at 02:00")
        await app.producer.send_user_notification("u-1", "email", "Welcome aboard")
        await app.producer.send_order_message("o-42", "create", "Order created")
        await app.scheduler.send_order_timeout_cancel("o-42", 1000)
        await asyncio.sleep(1.5)
    finally:
        await app.stop(drain=True)
    for message in app.handlers.handled:
        logger.info(
            "%s handled %s (%s)",
            message.receiver,
            message.envelope.message_id,
            message.category,
        )


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    asyncio.run(run_demo(settings))


if __name__ == "__main__":
    main()
