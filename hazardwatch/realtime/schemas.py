from datetime import datetime, timezone
from typing import Literal

from hazardwatch.core.schemas import CamelModel
from hazardwatch.messages.schemas import Message


NEW_MESSAGE = "NEW_MESSAGE"


class BroadcastEnvelope(CamelModel):
    """Wire payload between the relay and its subscribers. Never persisted."""

    type: Literal["NEW_MESSAGE"] = NEW_MESSAGE
    message: Message
    conversation_id: int
    timestamp: datetime

    @classmethod
    def for_message(cls, message: Message) -> "BroadcastEnvelope":
        return cls(
            message=message,
            conversation_id=message.conversation_id,
            timestamp=datetime.now(timezone.utc),
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
