"""
Delivery Relay: per-conversation broadcast topics.

Delivery is best-effort and at most once per subscription. Nothing is queued
for subscribers that connect after a publish; they catch up from the message
store instead. A failed publish never fails the send that triggered it.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from hazardwatch.messages.schemas import Message
from .schemas import BroadcastEnvelope


logger = logging.getLogger(__name__)

MAX_PENDING_DELIVERIES = 1000


class SubscriptionStatus(str, Enum):
    """Mirrors the channel states reported by Supabase Realtime."""

    SUBSCRIBING = "SUBSCRIBING"
    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"


StatusListener = Callable[[SubscriptionStatus, Optional[Exception]], None]

_CLOSED = object()


class Subscription:
    """
    A live, cancellable stream of messages for one subscriber on one topic.

    Iterate with `async for`; iteration ends when the subscription closes.
    Messages sent by `subscriber_id` itself are dropped (self-echo).
    """

    def __init__(
        self,
        conversation_id: int,
        subscriber_id: int,
        on_close: Optional[Callable[["Subscription"], Awaitable[None]]] = None,
        max_pending: int = MAX_PENDING_DELIVERIES,
    ):
        self.conversation_id = conversation_id
        self.subscriber_id = subscriber_id
        self.status = SubscriptionStatus.SUBSCRIBING
        self.error: Optional[Exception] = None
        self.acknowledged = asyncio.Event()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._listeners: List[StatusListener] = []
        self._on_close = on_close
        self._max_pending = max_pending
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def add_status_listener(self, listener: StatusListener):
        self._listeners.append(listener)

    def set_status(self, status: SubscriptionStatus, error: Optional[Exception] = None):
        if self._closed and status != SubscriptionStatus.CLOSED:
            return

        self.status = status
        self.error = error

        if status == SubscriptionStatus.SUBSCRIBED:
            self.acknowledged.set()
        else:
            self.acknowledged.clear()

        for listener in list(self._listeners):
            try:
                listener(status, error)
            except Exception:
                logger.exception(
                    f"status_listener_failed conversation_id={self.conversation_id} status={status.value}"
                )

    def deliver(self, envelope: BroadcastEnvelope) -> bool:
        """Queue an envelope's message; returns False when it was dropped."""
        if self._closed:
            return False

        message = envelope.message
        if envelope.conversation_id != self.conversation_id:
            return False
        if message.sender_id == self.subscriber_id:
            return False

        if self._queue.qsize() >= self._max_pending:
            logger.warning(
                f"subscription_queue_full conversation_id={self.conversation_id} "
                f"subscriber_id={self.subscriber_id} message_id={message.id}"
            )
            return False

        self._queue.put_nowait(message)
        return True

    async def close(self):
        if self._closed:
            return

        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self.set_status(SubscriptionStatus.CLOSED)

        if self._on_close is not None:
            await self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Message:
        if self._closed:
            raise StopAsyncIteration

        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class DeliveryRelay(ABC):
    @staticmethod
    def topic(conversation_id: int) -> str:
        return f"conversation-{conversation_id}"

    @abstractmethod
    async def publish(self, conversation_id: int, message: Message) -> bool:
        """Broadcast a stored message. Returns False instead of raising on failure."""

    @abstractmethod
    async def subscribe(self, conversation_id: int, subscriber_id: int) -> Subscription:
        """Start listening on a conversation topic."""

    async def close(self):
        pass


class InMemoryRelay(DeliveryRelay):
    """
    In-process topic bus for single-process deployments.

    Subscriptions are acknowledged immediately.
    """

    def __init__(self):
        # topic -> live subscriptions
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)

    def subscriber_count(self, conversation_id: int) -> int:
        return len(self._subscriptions.get(self.topic(conversation_id), []))

    async def publish(self, conversation_id: int, message: Message) -> bool:
        envelope = BroadcastEnvelope.for_message(message)
        topic = self.topic(conversation_id)

        delivered = 0
        for subscription in list(self._subscriptions.get(topic, [])):
            if subscription.deliver(envelope):
                delivered += 1

        logger.debug(f"broadcast_published topic={topic} message_id={message.id} delivered={delivered}")
        return True

    async def subscribe(self, conversation_id: int, subscriber_id: int) -> Subscription:
        topic = self.topic(conversation_id)
        subscription = Subscription(conversation_id, subscriber_id, on_close=self._remove)
        self._subscriptions[topic].append(subscription)

        logger.info(f"subscribed topic={topic} subscriber_id={subscriber_id}")
        subscription.set_status(SubscriptionStatus.SUBSCRIBED)
        return subscription

    async def _remove(self, subscription: Subscription):
        topic = self.topic(subscription.conversation_id)
        subs = self._subscriptions.get(topic)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(topic, None)
        logger.info(f"unsubscribed topic={topic} subscriber_id={subscription.subscriber_id}")

    async def close(self):
        for subs in list(self._subscriptions.values()):
            for subscription in list(subs):
                await subscription.close()
        self._subscriptions.clear()
