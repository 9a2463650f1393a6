"""
Conversation Directory.

Resolves the single conversation shared by two users, creating it on first
contact. Creation goes through the `create_direct_conversation` database
function (see models.py) so the conversation, both participant rows and the
canonical pair row are written atomically. When two first messages race, the
loser hits the unique pair constraint, gets `Conflict`, and looks the winner's
conversation up again.
"""

import logging
from typing import List, Optional, Tuple

from supabase import Client

from hazardwatch.core.errors import (
    AuthorizationError,
    Conflict,
    InvalidArgument,
    NotFound,
    Unavailable,
)
from hazardwatch.core.supabase_client import execute
from hazardwatch.messages import store
from hazardwatch.users.directory import get_user, get_users
from hazardwatch.users.schemas import UserSummary
from .schemas import ConversationData, ConversationSummary


logger = logging.getLogger(__name__)

CREATE_ATTEMPTS = 3


def canonical_pair(user_a: int, user_b: int) -> Tuple[int, int]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def find_conversation(client: Client, user_a: int, user_b: int) -> Optional[int]:
    """Lowest-id conversation that has both users as participants."""
    memberships = execute(
        client.table("conversation_participants")
        .select("conversation_id")
        .eq("user_id", user_a),
        "find_conversation",
    )

    candidate_ids = sorted({row["conversation_id"] for row in memberships.data or []})
    if not candidate_ids:
        return None

    shared = execute(
        client.table("conversation_participants")
        .select("conversation_id")
        .eq("user_id", user_b)
        .in_("conversation_id", candidate_ids)
        .order("conversation_id")
        .limit(1),
        "find_conversation",
    )

    if not shared.data:
        return None
    return shared.data[0]["conversation_id"]


def _create_conversation(client: Client, user_a: int, user_b: int) -> int:
    response = execute(
        client.rpc("create_direct_conversation", {"user_a": user_a, "user_b": user_b}),
        "create_conversation",
    )

    data = response.data
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        data = next(iter(data.values()), None)
    if data is None:
        raise Unavailable("Conversation creation returned no id.")

    return int(data)


def find_or_create_conversation(client: Client, user_a: int, user_b: int) -> int:
    """
    Return the conversation between `user_a` and `user_b`, creating it if needed.

    Commutative and idempotent: (a, b) and (b, a) always resolve to the same id.

    **Errors**
    - `InvalidArgument`: both ids are the same user
    - `NotFound`: `user_b` is not a real user
    - `Unavailable`: storage unreachable; safe to retry
    """
    if user_a == user_b:
        raise InvalidArgument("Cannot start a conversation with yourself")

    get_user(client, user_b)

    for attempt in range(1, CREATE_ATTEMPTS + 1):
        conversation_id = find_conversation(client, user_a, user_b)
        if conversation_id is not None:
            return conversation_id

        try:
            conversation_id = _create_conversation(client, user_a, user_b)
        except Conflict:
            # Someone else created the pair between our lookup and insert
            logger.info(
                f"conversation_create_conflict user_a={user_a} user_b={user_b} attempt={attempt}"
            )
            continue

        logger.info(
            f"conversation_created conversation_id={conversation_id} user_a={user_a} user_b={user_b}"
        )
        return conversation_id

    conversation_id = find_conversation(client, user_a, user_b)
    if conversation_id is not None:
        return conversation_id

    raise Unavailable("Could not resolve conversation, please retry.")


def get_conversation(client: Client, conversation_id: int) -> ConversationData:
    response = execute(
        client.table("conversations")
        .select("id, created_at")
        .eq("id", conversation_id)
        .limit(1),
        "get_conversation",
    )

    if not response.data:
        raise NotFound("Conversation not found")

    return ConversationData.model_validate(response.data[0])


def participant_ids(client: Client, conversation_id: int) -> List[int]:
    response = execute(
        client.table("conversation_participants")
        .select("user_id")
        .eq("conversation_id", conversation_id),
        "list_participants",
    )
    return sorted(row["user_id"] for row in response.data or [])


def is_participant(client: Client, conversation_id: int, user_id: int) -> bool:
    response = execute(
        client.table("conversation_participants")
        .select("conversation_id")
        .eq("conversation_id", conversation_id)
        .eq("user_id", user_id)
        .limit(1),
        "check_participant",
    )
    return bool(response.data)


def ensure_participant(client: Client, conversation_id: int, user_id: int):
    get_conversation(client, conversation_id)

    if not is_participant(client, conversation_id, user_id):
        raise AuthorizationError("Not authorized to access this conversation")


def list_conversations(client: Client, user_id: int) -> List[ConversationSummary]:
    """Inbox view: one summary per conversation, most recent activity first."""
    memberships = execute(
        client.table("conversation_participants")
        .select("conversation_id")
        .eq("user_id", user_id),
        "list_conversations",
    )

    conversation_ids = sorted({row["conversation_id"] for row in memberships.data or []})
    if not conversation_ids:
        return []

    others = execute(
        client.table("conversation_participants")
        .select("conversation_id, user_id")
        .in_("conversation_id", conversation_ids)
        .neq("user_id", user_id),
        "list_conversations",
    )
    other_by_conversation = {
        row["conversation_id"]: row["user_id"] for row in others.data or []
    }
    users = get_users(client, other_by_conversation.values())

    created = execute(
        client.table("conversations")
        .select("id, created_at")
        .in_("id", conversation_ids),
        "list_conversations",
    )
    created_at_by_id = {
        row["id"]: ConversationData.model_validate(row).created_at
        for row in created.data or []
    }

    summaries = []
    last_by_conversation = store.last_messages(client, conversation_ids)
    unread_by_conversation = store.unread_counts(client, conversation_ids, user_id)

    for conversation_id in conversation_ids:
        other = users.get(other_by_conversation.get(conversation_id))
        # Skip conversations without another participant
        if other is None or conversation_id not in created_at_by_id:
            continue

        last = last_by_conversation.get(conversation_id)

        summaries.append(
            ConversationSummary(
                id=conversation_id,
                other_user=UserSummary.from_record(other),
                last_message=last.content if last else None,
                last_message_at=last.created_at if last else created_at_by_id[conversation_id],
                unread_count=unread_by_conversation.get(conversation_id, 0),
            )
        )

    summaries.sort(key=lambda s: (s.last_message_at, s.id), reverse=True)
    return summaries
