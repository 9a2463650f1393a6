import logging
from functools import lru_cache

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client

from hazardwatch.core.config import get_settings
from hazardwatch.core.errors import Conflict, InvalidArgument, NotFound, Unavailable


logger = logging.getLogger(__name__)

# Postgres SQLSTATE codes surfaced by PostgREST
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
INVALID_TEXT_REPRESENTATION = "22P02"


@lru_cache
def get_supabase() -> Client:
    """Service-role client, created on first use rather than at import."""
    settings = get_settings()

    if not settings.supabase_url or not settings.supabase_key:
        raise Unavailable("Supabase is not configured.")

    return create_client(settings.supabase_url, settings.supabase_key)


def execute(query, action: str):
    """
    Run a PostgREST query builder and translate its failures.

    `action` is only used to label log lines, e.g. `append_message`.
    """
    try:
        return query.execute()

    except APIError as error:
        if error.code == UNIQUE_VIOLATION:
            raise Conflict(f"{action}: unique constraint violated.")
        if error.code == FOREIGN_KEY_VIOLATION:
            raise NotFound(f"{action}: referenced row does not exist.")
        if error.code == INVALID_TEXT_REPRESENTATION:
            raise InvalidArgument(f"{action}: malformed identifier.")

        logger.error(f"supabase_error action={action} code={error.code} message={error.message}")
        raise Unavailable(f"Database error during {action}.")

    except httpx.HTTPError as error:
        logger.error(f"supabase_unreachable action={action} error={error}")
        raise Unavailable(f"Database unreachable during {action}.")
