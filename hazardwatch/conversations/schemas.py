from datetime import datetime
from typing import List, Optional

from hazardwatch.core.schemas import CamelModel
from hazardwatch.users.schemas import UserSummary


class ConversationData(CamelModel):
    id: int
    created_at: datetime


# Get Conversations
class ConversationSummary(CamelModel):
    id: int
    other_user: UserSummary
    last_message: Optional[str] = None
    last_message_at: datetime
    unread_count: int


class GetConversationsResponseModel(CamelModel):
    conversations: List[ConversationSummary]
