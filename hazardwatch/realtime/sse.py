"""Server-Sent Events bridge from a relay subscription to an HTTP client."""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

from fastapi import Request
from fastapi.responses import StreamingResponse

from .relay import DeliveryRelay, Subscription
from .schemas import BroadcastEnvelope


logger = logging.getLogger(__name__)


@dataclass
class SSEEvent:
    event: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def encode(self) -> str:
        lines = [
            f"id: {self.id}",
            f"event: {self.event}",
            f"data: {json.dumps(self.data)}",
            "",  # Empty line to end the event
        ]
        return "\n".join(lines) + "\n"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def message_event_stream(
    relay: DeliveryRelay,
    conversation_id: int,
    subscriber_id: int,
    request: Request,
    heartbeat_interval: float = 30,
) -> AsyncGenerator[str, None]:
    """
    Forward relay deliveries as `message` events.

    The subscription is opened once the response starts streaming, so a client
    that goes away before then never holds one. Sends `connected` first and
    `heartbeat` whenever nothing arrived within `heartbeat_interval`. The
    subscription is closed however the stream ends.
    """
    subscription: Optional[Subscription] = None

    try:
        subscription = await relay.subscribe(conversation_id, subscriber_id)
        iterator = subscription.__aiter__()

        yield SSEEvent(
            event="connected",
            data={
                "conversationId": conversation_id,
                "status": subscription.status.value,
                "timestamp": _now(),
            },
        ).encode()

        while True:
            if await request.is_disconnected():
                break

            try:
                message = await asyncio.wait_for(iterator.__anext__(), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                yield SSEEvent(event="heartbeat", data={"timestamp": _now()}).encode()
                continue
            except StopAsyncIteration:
                break

            envelope = BroadcastEnvelope.for_message(message)
            yield SSEEvent(event="message", data=envelope.to_wire(), id=str(message.id)).encode()

    finally:
        if subscription is not None:
            await subscription.close()
        logger.info(
            f"sse_stream_closed conversation_id={conversation_id} subscriber_id={subscriber_id}"
        )


def create_sse_response(generator: AsyncGenerator[str, None]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
