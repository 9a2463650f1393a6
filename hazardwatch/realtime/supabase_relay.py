"""
Delivery Relay over Supabase Realtime broadcast.

Publishing uses the Realtime REST broadcast endpoint so the API server does
not have to hold a websocket open per conversation. Subscribing joins the
`conversation-<id>` channel through the supabase async client.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError
from supabase import acreate_client, AsyncClient

from hazardwatch.messages.schemas import Message
from .relay import DeliveryRelay, Subscription, SubscriptionStatus
from .schemas import BroadcastEnvelope


logger = logging.getLogger(__name__)

BROADCAST_EVENT = "message"
CHANNEL_OPTIONS = {
    "config": {
        "broadcast": {
            "self": False,  # Don't receive our own broadcasts
            "ack": True,
        },
    },
}


class SupabaseRelay(DeliveryRelay):
    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        realtime_client: Optional[AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self._broadcast_url = f"{supabase_url.rstrip('/')}/realtime/v1/api/broadcast"
        self._supabase_url = supabase_url
        self._api_key = api_key
        self._timeout = timeout
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._realtime = realtime_client

    async def publish(self, conversation_id: int, message: Message) -> bool:
        topic = self.topic(conversation_id)
        envelope = BroadcastEnvelope.for_message(message)

        body = {
            "messages": [
                {
                    "topic": topic,
                    "event": BROADCAST_EVENT,
                    "payload": envelope.to_wire(),
                }
            ]
        }
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
        }

        try:
            response = await self._http.post(
                self._broadcast_url, json=body, headers=headers, timeout=self._timeout
            )
            response.raise_for_status()

        except httpx.HTTPError as error:
            logger.warning(
                f"broadcast_failed topic={topic} message_id={message.id} error={error!r}"
            )
            return False

        logger.info(f"broadcast_sent topic={topic} message_id={message.id}")
        return True

    async def _get_realtime(self) -> AsyncClient:
        if self._realtime is None:
            self._realtime = await acreate_client(self._supabase_url, self._api_key)
        return self._realtime

    async def subscribe(self, conversation_id: int, subscriber_id: int) -> Subscription:
        topic = self.topic(conversation_id)
        client = await self._get_realtime()
        channel = client.channel(topic, CHANNEL_OPTIONS)

        async def release(_subscription: Subscription):
            try:
                await client.remove_channel(channel)
            except Exception as error:
                logger.warning(f"channel_remove_failed topic={topic} error={error!r}")

        subscription = Subscription(conversation_id, subscriber_id, on_close=release)

        def on_broadcast(payload: dict):
            # Realtime hands over the whole broadcast frame; the envelope is nested
            data = payload.get("payload", payload) if isinstance(payload, dict) else payload
            try:
                envelope = BroadcastEnvelope.model_validate(data)
            except ValidationError as error:
                logger.warning(f"broadcast_payload_invalid topic={topic} error={error}")
                return
            subscription.deliver(envelope)

        def on_state(state, error: Optional[Exception] = None):
            value = getattr(state, "value", state)
            try:
                status = SubscriptionStatus(str(value).upper())
            except ValueError:
                logger.warning(f"channel_state_unknown topic={topic} state={value}")
                return

            if error is not None:
                logger.warning(f"channel_error topic={topic} status={status.value} error={error!r}")
            else:
                logger.info(f"channel_status topic={topic} status={status.value}")
            subscription.set_status(status, error)

        channel.on_broadcast(BROADCAST_EVENT, on_broadcast)

        try:
            await channel.subscribe(on_state)
        except Exception as error:
            # The session falls back to polling; a dead socket must not end the view
            logger.warning(f"channel_subscribe_failed topic={topic} error={error!r}")
            subscription.set_status(SubscriptionStatus.CHANNEL_ERROR, error)

        return subscription

    async def close(self):
        if self._realtime is not None:
            try:
                await self._realtime.remove_all_channels()
            except Exception as error:
                logger.warning(f"realtime_close_failed error={error!r}")
        if self._owns_http:
            await self._http.aclose()
