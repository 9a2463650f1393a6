"""
Message Store: the per-conversation append-log.

Rows are ordered by (created_at, id). Ids come from a Postgres identity column
and timestamps from clock_timestamp(). A row only becomes visible when its
transaction commits, so a lower id can show up after a higher one; pollers
re-read a `since` window instead of trusting `after_id` alone.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from supabase import Client

from hazardwatch.core.errors import InvalidArgument, Unavailable
from hazardwatch.core.supabase_client import execute
from .schemas import Message


logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = (
    "id, uuid, conversation_id, sender_id, content, message_type, created_at, read_at"
)
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def append(
    client: Client,
    conversation_id: int,
    sender_id: int,
    content: str,
    message_type: str = "text",
    client_token: Optional[UUID] = None,
) -> Message:
    """
    Store a message and return the stored row.

    `client_token` becomes the message uuid, letting the sender match its
    optimistic entry with the confirmed copy.
    """
    text = (content or "").strip()
    if not text:
        raise InvalidArgument("Message content must not be empty")

    row = {
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "content": text,
        "message_type": message_type or "text",
    }
    if client_token is not None:
        row["uuid"] = str(client_token)

    response = execute(client.table("messages").insert(row), "append_message")

    if not response.data:
        raise Unavailable("Message insert returned no row.")

    message = Message.model_validate(response.data[0])
    logger.info(
        f"message_appended conversation_id={conversation_id} message_id={message.id} sender_id={sender_id}"
    )
    return message


def list_since(
    client: Client,
    conversation_id: int,
    after_id: Optional[int] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    since: Optional[datetime] = None,
) -> List[Message]:
    """
    Messages in ascending (created_at, id) order.

    `after_id` only returns larger ids. `since` returns rows created at or
    after that instant, which lets a poller re-read a window and pick up rows
    that committed after a later id was already visible. A page shorter than
    `limit` means the end of history was reached.
    """
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidArgument(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise InvalidArgument("offset must not be negative")

    query = (
        client.table("messages")
        .select(MESSAGE_COLUMNS)
        .eq("conversation_id", conversation_id)
    )
    if after_id is not None:
        query = query.gt("id", after_id)
    if since is not None:
        query = query.gte("created_at", since.isoformat())

    response = execute(
        query.order("created_at").order("id").range(offset, offset + limit - 1),
        "list_messages",
    )

    messages = [Message.model_validate(row) for row in response.data or []]
    return sorted(messages, key=lambda m: m.order_key)


def last_messages(client: Client, conversation_ids: Iterable[int]) -> Dict[int, Message]:
    """Latest message per conversation, read from the `conversation_last_messages` view."""
    ids = sorted(set(conversation_ids))
    if not ids:
        return {}

    response = execute(
        client.table("conversation_last_messages")
        .select(MESSAGE_COLUMNS)
        .in_("conversation_id", ids),
        "last_messages",
    )

    return {
        row["conversation_id"]: Message.model_validate(row) for row in response.data or []
    }


def unread_counts(
    client: Client, conversation_ids: Iterable[int], reader_id: int
) -> Dict[int, int]:
    """Unread messages from the other participant, counted by the database."""
    ids = sorted(set(conversation_ids))
    counts = {conversation_id: 0 for conversation_id in ids}
    if not ids:
        return counts

    response = execute(
        client.table("conversation_unread_counts")
        .select("conversation_id, unread_count")
        .in_("conversation_id", ids)
        .neq("sender_id", reader_id),
        "unread_counts",
    )

    for row in response.data or []:
        counts[row["conversation_id"]] += row["unread_count"]
    return counts


def mark_read(client: Client, conversation_id: int, reader_id: int) -> int:
    """Stamp read_at on the other participant's unread messages."""
    response = execute(
        client.table("messages")
        .update({"read_at": datetime.now(timezone.utc).isoformat()})
        .eq("conversation_id", conversation_id)
        .neq("sender_id", reader_id)
        .is_("read_at", "null"),
        "mark_read",
    )

    updated = len(response.data or [])
    if updated:
        logger.info(
            f"messages_marked_read conversation_id={conversation_id} reader_id={reader_id} count={updated}"
        )
    return updated
