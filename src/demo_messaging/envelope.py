"""MessageEnvelope: canonical message representation for every exchange pattern."""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

MESSAGE_ID_PREFIX = "MSG"
CREATE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class MessageType(str, Enum):
    """Exchange pattern an envelope is sent with; decides the routing rule."""

    DIRECT = "DIRECT"
    FANOUT = "FANOUT"
    TOPIC = "TOPIC"
    DELAY = "DELAY"


def new_message_id() -> str:
    """Return ``MSG<epoch millis>-<uuid4 hex>``.

    The timestamp keeps ids readable and roughly sortable; the uuid part makes
    concurrent sends within the same millisecond distinct.
    """
    return f"{MESSAGE_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex}"


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


class MessageEnvelope(BaseModel):
    """Immutable envelope carried through routing, transit and delivery.

    Python attributes use snake_case; the wire format uses the aliases
    (``id``, ``type``, ``routingKey``, ``createTime``, ``extraData``).
    Builder-phase changes before sending go through :meth:`with_routing_key`
    and :meth:`with_delay`; the consumer records itself with
    :meth:`received_by`. Each returns a new envelope with the same id.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message_id: str = Field(default_factory=new_message_id, alias="id", min_length=1)
    content: str = ""
    message_type: MessageType = Field(..., alias="type")
    sender: str | None = None
    receiver: str | None = None
    routing_key: str | None = Field(default=None, alias="routingKey")
    delay: int | None = Field(default=None, ge=0, description="Delay in milliseconds")
    create_time: datetime = Field(default_factory=_now, alias="createTime")
    extra_data: Any = Field(default=None, alias="extraData")

    @field_validator("create_time", mode="before")
    @classmethod
    def _parse_create_time(cls, value: Any) -> Any:
        # Wire precision is one second; truncate so round trips compare equal.
        if isinstance(value, str):
            try:
                return datetime.strptime(value, CREATE_TIME_FORMAT)
            except ValueError:
                value = datetime.fromisoformat(value)
        if isinstance(value, datetime):
            return value.replace(microsecond=0)
        return value

    @field_serializer("create_time", when_used="json")
    def _format_create_time(self, value: datetime) -> str:
        return value.strftime(CREATE_TIME_FORMAT)

    @model_validator(mode="after")
    def _delay_only_for_delay_type(self) -> MessageEnvelope:
        if self.delay is not None and self.message_type is not MessageType.DELAY:
            raise ValueError(
                f"delay is only valid for DELAY envelopes, got {self.message_type.value}"
            )
        return self

    @classmethod
    def create(
        cls,
        content: str,
        message_type: MessageType,
        *,
        routing_key: str | None = None,
        delay: int | None = None,
        sender: str | None = None,
        message_id: str | None = None,
        extra_data: Any = None,
    ) -> MessageEnvelope:
        """Build an envelope with consistent defaults (generated id, create time now)."""
        fields: dict[str, Any] = {
            "content": content,
            "message_type": message_type,
            "routing_key": routing_key,
            "delay": delay,
            "sender": sender,
            "extra_data": extra_data,
        }
        if message_id is not None:
            fields["message_id"] = message_id
        return cls(**fields)

    def with_routing_key(self, routing_key: str) -> MessageEnvelope:
        return self.model_copy(update={"routing_key": routing_key})

    def with_delay(self, delay: int) -> MessageEnvelope:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        if self.message_type is not MessageType.DELAY:
            raise ValueError("delay is only valid for DELAY envelopes")
        return self.model_copy(update={"delay": delay})

    def received_by(self, receiver: str) -> MessageEnvelope:
        """Return a copy carrying the consumer that processed it."""
        return self.model_copy(update={"receiver": receiver})
