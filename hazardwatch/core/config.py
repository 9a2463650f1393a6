import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

from hazardwatch.utils.env_helper import (
    env_bool,
    env_float,
    env_list,
    env_none_or_str,
)

load_dotenv()

DEFAULT_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str]
    supabase_key: Optional[str]
    jwt_secret: Optional[str]
    realtime_backend: str = "memory"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    log_level: str = "INFO"
    log_json: bool = False
    sse_heartbeat_seconds: float = 30.0
    relay_timeout_seconds: float = 5.0

    @property
    def jwt_issuer(self) -> Optional[str]:
        if not self.supabase_url:
            return None
        return f"{self.supabase_url.rstrip('/')}/auth/v1"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url=env_none_or_str("PUBLIC_SUPABASE_URL"),
            supabase_key=env_none_or_str("SECRET_API_KEY"),
            jwt_secret=env_none_or_str("SUPABASE_JWT_SECRET"),
            realtime_backend=os.getenv("REALTIME_BACKEND", "memory").lower(),
            cors_origins=env_list("CORS_ORIGINS", DEFAULT_ORIGINS),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=env_bool("LOG_JSON", default=False),
            sse_heartbeat_seconds=env_float("SSE_HEARTBEAT_SECONDS", 30.0),
            relay_timeout_seconds=env_float("RELAY_TIMEOUT_SECONDS", 5.0),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
