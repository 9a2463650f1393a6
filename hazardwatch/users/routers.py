from fastapi import APIRouter, Depends, Query
from supabase import Client

from hazardwatch.core.dependencies import get_current_user
from hazardwatch.core.supabase_client import get_supabase
from .directory import search_users
from .schemas import UserRecord, UserSearchResponseModel


router = APIRouter()


@router.get("/search", response_model=UserSearchResponseModel, status_code=200)
def user_search(
    q: str = Query(""),
    user: UserRecord = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Search for a message recipient.

    Case-insensitive substring match on username, full name or email,
    returning at most 10 users ordered by username.

    **Errors**
    - `400`: Query shorter than 2 characters
    - `401`: Invalid or expired token
    """
    results = [
        {
            "id": str(found.id),
            "display_name": found.display_name,
            "email": found.email,
            "role": found.role,
        }
        for found in search_users(client, q)
    ]

    return {"query": q, "results": results, "count": len(results)}
