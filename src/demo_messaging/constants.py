"""Exchange, queue and routing-key names used by the demo topology."""

from __future__ import annotations

# Exchanges
DIRECT_EXCHANGE = "demo.direct.exchange"
FANOUT_EXCHANGE = "demo.fanout.exchange"
TOPIC_EXCHANGE = "demo.topic.exchange"
DELAY_EXCHANGE = "demo.delay.exchange"
DEAD_LETTER_EXCHANGE = "demo.dead.letter.exchange"

# Queues
DIRECT_QUEUE = "demo.direct.queue"
FANOUT_QUEUE_1 = "demo.fanout.queue.1"
FANOUT_QUEUE_2 = "demo.fanout.queue.2"
TOPIC_QUEUE_USER = "demo.topic.queue.user"
TOPIC_QUEUE_ORDER = "demo.topic.queue.order"
TOPIC_QUEUE_ALL = "demo.topic.queue.all"
DELAY_QUEUE = "demo.delay.queue"
DEAD_LETTER_QUEUE = "demo.dead.letter.queue"

# Routing keys
DIRECT_ROUTING_KEY = "demo.direct"
TOPIC_ROUTING_KEY_USER_EMAIL = "user.email.send"
TOPIC_ROUTING_KEY_USER_SMS = "user.sms.send"
TOPIC_ROUTING_KEY_ORDER_CREATE = "order.create.notify"
TOPIC_ROUTING_KEY_ORDER_PAYMENT = "order.payment.notify"
DELAY_ROUTING_KEY = "demo.delay"
DEAD_LETTER_ROUTING_KEY = "demo.dead.letter"

# Topic binding patterns
TOPIC_PATTERN_USER = "user.#"
TOPIC_PATTERN_ORDER = "order.#"
TOPIC_PATTERN_ALL = "#"

# Delays (milliseconds)
DELAY_5_SECONDS = 5 * 1000
DELAY_30_SECONDS = 30 * 1000
DELAY_1_MINUTE = 60 * 1000
DELAY_5_MINUTES = 5 * 60 * 1000

DEFAULT_DELAY_MS = DELAY_5_SECONDS

# AMQP header carrying the per-message delay for the delayed-message exchange
DELAY_HEADER = "x-delay"
