import logging
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from supabase import Client

from hazardwatch.core.config import Settings, get_settings
from hazardwatch.core.errors import Unauthenticated, Unavailable
from hazardwatch.core.supabase_client import get_supabase
from hazardwatch.realtime.relay import DeliveryRelay
from hazardwatch.users.directory import get_user_by_supabase_id
from hazardwatch.users.schemas import UserRecord

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Missing bearer token")

    if not settings.jwt_secret:
        raise Unavailable("Token verification is not configured.")

    token = credentials.credentials

    options = {"verify_aud": False}
    if settings.jwt_issuer is None:
        options["verify_iss"] = False

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options=options,
            leeway=60,
        )

    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")

    except jwt.InvalidTokenError as e:
        logger.info(f"jwt_verification_failed error={e}")
        raise Unauthenticated("Invalid token")

    if not payload.get("sub"):
        raise Unauthenticated("Token has no subject")

    return payload


def get_current_user(
    payload: dict = Depends(verify_token),
    client: Client = Depends(get_supabase),
) -> UserRecord:
    """Map the Supabase Auth subject onto the numeric application user."""
    return get_user_by_supabase_id(client, payload["sub"])


def get_relay(request: Request) -> DeliveryRelay:
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise Unavailable("Realtime relay is not running.")
    return relay
