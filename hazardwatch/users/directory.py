"""
Read-only access to the `users` table owned by the identity collaborator.
"""

from typing import Iterable, Dict, List

from supabase import Client

from hazardwatch.core.errors import InvalidArgument, NotFound
from hazardwatch.core.supabase_client import execute
from .schemas import UserRecord


USER_COLUMNS = "id, supabase_id, username, full_name, email, role, avatar_url"
MIN_QUERY_LENGTH = 2
SEARCH_LIMIT = 10


def get_user_by_supabase_id(client: Client, supabase_id: str) -> UserRecord:
    response = execute(
        client.table("users")
        .select(USER_COLUMNS)
        .eq("supabase_id", supabase_id)
        .limit(1),
        "lookup_current_user",
    )

    if not response.data:
        raise NotFound("User not found")

    return UserRecord.model_validate(response.data[0])


def get_user(client: Client, user_id: int) -> UserRecord:
    response = execute(
        client.table("users").select(USER_COLUMNS).eq("id", user_id).limit(1),
        "lookup_user",
    )

    if not response.data:
        raise NotFound("Recipient not found")

    return UserRecord.model_validate(response.data[0])


def get_users(client: Client, user_ids: Iterable[int]) -> Dict[int, UserRecord]:
    ids = sorted(set(user_ids))
    if not ids:
        return {}

    response = execute(
        client.table("users").select(USER_COLUMNS).in_("id", ids),
        "lookup_users",
    )

    return {row["id"]: UserRecord.model_validate(row) for row in response.data or []}


def search_users(client: Client, query: str) -> List[UserRecord]:
    """Substring match on username, full name or email; at most 10 results."""
    query = (query or "").strip()

    if len(query) < MIN_QUERY_LENGTH:
        raise InvalidArgument("Query too short")

    # PostgREST or-filters use commas and parentheses as separators
    if any(char in query for char in ",()"):
        raise InvalidArgument("Query contains unsupported characters")

    pattern = f"%{query}%"
    response = execute(
        client.table("users")
        .select(USER_COLUMNS)
        .or_(
            f"username.ilike.{pattern},full_name.ilike.{pattern},email.ilike.{pattern}"
        )
        .order("username")
        .limit(SEARCH_LIMIT),
        "search_users",
    )

    return [UserRecord.model_validate(row) for row in response.data or []]
