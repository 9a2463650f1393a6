import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from supabase import Client

from hazardwatch.core.config import Settings, get_settings
from hazardwatch.core.dependencies import get_current_user, get_relay
from hazardwatch.core.errors import InvalidArgument
from hazardwatch.core.supabase_client import get_supabase
from hazardwatch.conversations.directory import (
    ensure_participant,
    find_or_create_conversation,
)
from hazardwatch.realtime.relay import DeliveryRelay
from hazardwatch.realtime.sse import create_sse_response, message_event_stream
from hazardwatch.users.directory import get_users
from hazardwatch.users.schemas import UserRecord, UserSummary
from . import store
from .schemas import (
    GetMessagesResponseModel,
    MarkReadModel,
    MarkReadResponseModel,
    Message,
    SendMessageModel,
    SendMessageResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()


def _with_senders(client: Client, messages: List[Message]) -> List[Message]:
    users = get_users(client, (m.sender_id for m in messages))
    for message in messages:
        sender = users.get(message.sender_id)
        if sender is not None:
            message.sender = UserSummary.from_record(sender)
    return messages


@router.post("", response_model=SendMessageResponseModel, status_code=201)
async def send_message(
    data: SendMessageModel,
    user: UserRecord = Depends(get_current_user),
    client: Client = Depends(get_supabase),
    relay: DeliveryRelay = Depends(get_relay),
):
    """
    Send a direct message to another user.

    Resolves (or creates, on first contact) the conversation between the
    caller and the recipient, stores the message, then broadcasts it on the
    conversation's realtime topic.

    **Input**
    - `recipientId`: numeric id of the user to message
    - `content`: message text, must not be blank
    - `messageType`: defaults to `text`
    - `clientToken`: optional UUID used by the client to match its optimistic copy

    **Returns**
    - `message`: the stored message, including its server id and timestamp
    - `conversationId`: the conversation it was stored in

    The stored message is returned even when the broadcast fails; other
    participants then pick it up on their next poll.

    **Errors**
    - 400: Blank content or messaging yourself
    - 401: Missing or invalid token
    - 404: Caller or recipient not found
    - 503: Database unavailable, the message was not stored
    """
    if not data.content.strip():
        raise InvalidArgument("Message content must not be empty")

    conversation_id = await run_in_threadpool(
        find_or_create_conversation, client, user.id, data.recipient_id
    )

    message = await run_in_threadpool(
        store.append,
        client,
        conversation_id,
        user.id,
        data.content,
        data.message_type,
        data.client_token,
    )
    message.sender = UserSummary.from_record(user)

    try:
        delivered = await relay.publish(conversation_id, message)
    except Exception:
        logger.exception(
            f"broadcast_error conversation_id={conversation_id} message_id={message.id}"
        )
        delivered = False

    if not delivered:
        logger.warning(
            f"broadcast_not_delivered conversation_id={conversation_id} message_id={message.id}"
        )

    return {"message": message, "conversation_id": conversation_id}


@router.get("", response_model=GetMessagesResponseModel, status_code=200)
def get_messages(
    conversation_id: int = Query(..., alias="conversationId"),
    limit: int = Query(store.DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
    after_id: Optional[int] = Query(None, alias="afterId"),
    since: Optional[datetime] = Query(None),
    user: UserRecord = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Retrieve messages for a conversation, oldest first.

    **Query Parameters**
    - `conversationId`: the conversation to read
    - `limit`: page size, 1-200 (default 50)
    - `offset`: number of messages to skip (default 0)
    - `afterId`: only messages with a larger id
    - `since`: only messages created at or after this ISO-8601 instant (used
      for catch-up polling, re-reading a window catches late commits)

    **Returns**
    - `messages`: ordered by creation time, then id
    - `hasMore`: true when the page is full and more may follow

    **Errors**
    - 400: Invalid paging parameters
    - 403: Caller is not a participant of the conversation
    - 404: Conversation does not exist
    """
    ensure_participant(client, conversation_id, user.id)

    messages = store.list_since(
        client,
        conversation_id,
        after_id=after_id,
        limit=limit,
        offset=offset,
        since=since,
    )

    return {
        "messages": _with_senders(client, messages),
        "has_more": len(messages) == limit,
    }


@router.post("/read", response_model=MarkReadResponseModel, status_code=200)
def mark_messages_read(
    data: MarkReadModel,
    user: UserRecord = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """Mark the other participant's messages in a conversation as read."""
    ensure_participant(client, data.conversation_id, user.id)

    return {"updated": store.mark_read(client, data.conversation_id, user.id)}


@router.get("/stream")
async def stream_messages(
    request: Request,
    conversation_id: int = Query(..., alias="conversationId"),
    user: UserRecord = Depends(get_current_user),
    client: Client = Depends(get_supabase),
    relay: DeliveryRelay = Depends(get_relay),
    settings: Settings = Depends(get_settings),
):
    """
    Live message feed for one conversation as Server-Sent Events.

    Emits `connected`, then a `message` event per broadcast envelope, and a
    `heartbeat` when idle. The caller's own messages are not echoed back.
    Messages sent before the stream opened are not replayed; fetch them with
    `GET /messages`.
    """
    await run_in_threadpool(ensure_participant, client, conversation_id, user.id)

    return create_sse_response(
        message_event_stream(
            relay,
            conversation_id,
            user.id,
            request,
            heartbeat_interval=settings.sse_heartbeat_seconds,
        )
    )
