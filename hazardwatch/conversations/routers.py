from fastapi import APIRouter, Depends
from supabase import Client

from hazardwatch.core.dependencies import get_current_user
from hazardwatch.core.supabase_client import get_supabase
from hazardwatch.users.schemas import UserRecord
from .directory import list_conversations
from .schemas import GetConversationsResponseModel


router = APIRouter()


@router.get("", response_model=GetConversationsResponseModel, status_code=200)
def get_conversations(
    user: UserRecord = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Retrieve all conversations for the authenticated user.

    Used to populate the messages inbox. Each entry names the other
    participant and carries the latest message and the number of messages
    from them that the caller has not read yet.

    **Returns**
    - `conversations`: newest activity first
        - `id`: Conversation ID
        - `otherUser`: id, username, display name, avatar and role
        - `lastMessage`: latest message text, or null
        - `lastMessageAt`: time of the latest message (conversation creation if none)
        - `unreadCount`: unread messages from the other participant

    **Errors**
    - 401: Invalid or expired JWT
    - 503: Database unavailable
    """
    return {"conversations": list_conversations(client, user.id)}
