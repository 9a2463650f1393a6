import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .conversations import routers as conversation_router
from .messages import routers as message_router
from .users import routers as user_router

from .core.config import Settings, get_settings
from .core.errors import register_exception_handlers
from .core.middleware import logging_middleware
from .realtime.relay import DeliveryRelay, InMemoryRelay
from .realtime.supabase_relay import SupabaseRelay
from .utils.logging_config import setup_logging

load_dotenv()
logger = logging.getLogger(__name__)


def build_relay(settings: Settings) -> DeliveryRelay:
    if settings.realtime_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise RuntimeError("REALTIME_BACKEND=supabase needs PUBLIC_SUPABASE_URL and SECRET_API_KEY")
        return SupabaseRelay(
            settings.supabase_url,
            settings.supabase_key,
            timeout=settings.relay_timeout_seconds,
        )

    if settings.realtime_backend != "memory":
        raise RuntimeError(f"Unknown REALTIME_BACKEND: {settings.realtime_backend}")
    return InMemoryRelay()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    relay = build_relay(settings)
    app.state.relay = relay
    logger.info(f"relay_started backend={settings.realtime_backend}")

    try:
        yield
    finally:
        await relay.close()
        app.state.relay = None
        logger.info("relay_stopped")


settings = get_settings()
setup_logging(settings.log_level, settings.log_json)

app = FastAPI(title="HazardWatch Messaging", lifespan=lifespan)
app.include_router(message_router.router, prefix="/messages", tags=["Messages"])
app.include_router(conversation_router.router, prefix="/conversations", tags=["Conversations"])
app.include_router(user_router.router, prefix="/users", tags=["Users"])

register_exception_handlers(app)

app.middleware("http")(logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}
