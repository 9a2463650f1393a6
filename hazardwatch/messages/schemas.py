from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from hazardwatch.core.schemas import CamelModel
from hazardwatch.users.schemas import UserSummary


class Message(CamelModel):
    id: int
    uuid: Optional[UUID] = None
    conversation_id: int
    sender_id: int
    content: str
    message_type: str = "text"
    created_at: datetime
    read_at: Optional[datetime] = None
    sender: Optional[UserSummary] = None

    @property
    def order_key(self):
        return (self.created_at, self.id)


# Send Messages
class SendMessageModel(CamelModel):
    recipient_id: int
    content: str
    message_type: str = Field(default="text", min_length=1, max_length=32)
    client_token: Optional[UUID] = None


class SendMessageResponseModel(CamelModel):
    message: Message
    conversation_id: int


# Get messages
class GetMessagesResponseModel(CamelModel):
    messages: List[Message]
    has_more: bool


# Read receipts
class MarkReadModel(CamelModel):
    conversation_id: int


class MarkReadResponseModel(CamelModel):
    updated: int
