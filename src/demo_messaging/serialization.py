"""EnvelopeSerializer: JSON wire format for MessageEnvelope."""

from __future__ import annotations

import json

from pydantic import ValidationError

from .envelope import MessageEnvelope
from .exceptions import MessagingSerializationError

CONTENT_TYPE = "application/json"


class EnvelopeSerializer:
    """Serialize/deserialize MessageEnvelope to/from UTF-8 JSON bytes.

    Field names follow the wire aliases (``id``, ``type``, ``routingKey``,
    ``delay``, ``createTime``, ``extraData``); ``createTime`` is written as
    ``yyyy-MM-dd HH:mm:ss`` local time.
    """

    content_type = CONTENT_TYPE

    def serialize(self, envelope: MessageEnvelope) -> bytes:
        """Encode envelope to JSON bytes."""
        try:
            data = envelope.model_dump(mode="json", by_alias=True)
            return json.dumps(data, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise MessagingSerializationError(str(e)) from e

    def deserialize(self, raw: bytes) -> MessageEnvelope:
        """Decode JSON bytes to MessageEnvelope."""
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MessagingSerializationError(str(e)) from e
        if not isinstance(data, dict):
            raise MessagingSerializationError(
                f"Expected a JSON object, got {type(data).__name__}"
            )
        try:
            return MessageEnvelope.model_validate(data)
        except ValidationError as e:
            raise MessagingSerializationError(str(e)) from e
