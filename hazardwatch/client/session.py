"""
Client Session Reconciler.

One `ConversationSession` backs one open conversation view. It owns the
relay subscription and the polling task for that view and releases both on
close:

    CONNECTING --ack within grace period--> LIVE
    CONNECTING --no ack / channel error---> DEGRADED (poll every interval)
    LIVE       --channel error / closed---> DEGRADED
    DEGRADED   --ack---------------------> LIVE (one catch-up poll)
    any        --close()-----------------> CLOSED

Polls re-read a window that starts `poll_overlap` seconds before the newest
message seen, so a message that commits late under a lower id still shows up.

Usage::

    async with ConversationSession(api, relay, me, them, conversation_id=5) as session:
        await session.send("Reef bleaching near pier")
"""

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from hazardwatch.core.errors import InvalidArgument, MessagingError
from hazardwatch.realtime.relay import DeliveryRelay, Subscription, SubscriptionStatus
from .api import MessagesApiClient
from .reconciler import ChatEntry, MergeOutcome, MessageList


logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 3.0
DEFAULT_POLL_INTERVAL = 2.0
# Catch-up polls re-read this many seconds before the newest message seen, so a
# row that commits late under a lower id is still picked up
DEFAULT_POLL_OVERLAP = 10.0
DEFAULT_PAGE_SIZE = 50

FAILED_STATUSES = (
    SubscriptionStatus.CHANNEL_ERROR,
    SubscriptionStatus.TIMED_OUT,
    SubscriptionStatus.CLOSED,
)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"
    CLOSED = "closed"


# (visible entries, scroll_to_bottom)
ChangeListener = Callable[[List[ChatEntry], bool], None]
StateListener = Callable[[SessionState], None]


class ConversationSession:
    def __init__(
        self,
        api: MessagesApiClient,
        relay: DeliveryRelay,
        current_user_id: int,
        recipient_id: int,
        conversation_id: Optional[int] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_overlap: float = DEFAULT_POLL_OVERLAP,
        page_size: int = DEFAULT_PAGE_SIZE,
        on_change: Optional[ChangeListener] = None,
        on_state_change: Optional[StateListener] = None,
    ):
        self.current_user_id = current_user_id
        self.recipient_id = recipient_id
        self.conversation_id = conversation_id
        self.grace_period = grace_period
        self.poll_interval = poll_interval
        self.poll_overlap = poll_overlap
        self.page_size = page_size

        self.messages = MessageList()
        self.state = SessionState.CONNECTING
        self.composer_text = ""
        self.load_error: Optional[MessagingError] = None

        self._api = api
        self._relay = relay
        self._on_change = on_change
        self._on_state_change = on_state_change

        self._subscription: Optional[Subscription] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._grace_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._catch_up_task: Optional[asyncio.Task] = None
        # Newest created_at among confirmed messages merged so far
        self._seen_until: Optional[datetime] = None

    @property
    def entries(self) -> List[ChatEntry]:
        return self.messages.entries

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    # Lifecycle

    async def open(self) -> "ConversationSession":
        """Load history and connect. Without a conversation id, waits for the first send."""
        if self.conversation_id is not None:
            await self.reload()
            await self._connect()
        return self

    async def close(self):
        if self.closed:
            return

        self._set_state(SessionState.CLOSED)

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._grace_task, self._poll_task, self._catch_up_task, self._listen_task)
            if task is not None and task is not current
        ]
        for task in tasks:
            task.cancel()

        subscription, self._subscription = self._subscription, None
        try:
            if subscription is not None:
                await subscription.close()
        finally:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"session_closed conversation_id={self.conversation_id}")

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # History

    async def reload(self) -> bool:
        """
        (Re)load the full history. On failure keeps what is shown, records
        `load_error` and returns False so the view can offer a retry.
        """
        if self.conversation_id is None or self.closed:
            return False

        try:
            await self._fetch_pages(since=None)
        except MessagingError as error:
            self.load_error = error
            logger.warning(
                f"history_load_failed conversation_id={self.conversation_id} error={error.detail}"
            )
            return False

        self.load_error = None
        return True

    async def backfill(self) -> int:
        """
        Re-read the window starting `poll_overlap` seconds before the newest
        message seen; returns how many were new. Repeats merge as duplicates.
        """
        if self.conversation_id is None or self.closed:
            return 0

        since = None
        if self._seen_until is not None:
            since = self._seen_until - timedelta(seconds=self.poll_overlap)
        return await self._fetch_pages(since=since)

    async def _fetch_pages(self, since: Optional[datetime]) -> int:
        added = 0
        offset = 0

        while True:
            page = await self._api.list_messages(
                self.conversation_id,
                limit=self.page_size,
                offset=offset,
                since=since,
            )
            if self.closed:
                return added

            for message in page.messages:
                if self._apply(ChatEntry.from_message(message)) in (
                    MergeOutcome.APPENDED,
                    MergeOutcome.INSERTED,
                ):
                    added += 1

            if len(page.messages) < self.page_size:
                return added
            offset += len(page.messages)

    # Sending

    async def send(self, text: Optional[str] = None, message_type: str = "text") -> ChatEntry:
        """
        Send `text` (or the current composer text).

        The message shows up immediately as pending. On failure the pending
        entry is removed, the text goes back into `composer_text` and the
        error is re-raised.
        """
        if self.closed:
            raise InvalidArgument("Conversation view is closed")

        content = (self.composer_text if text is None else text).strip()
        if not content:
            raise InvalidArgument("Message content must not be empty")

        pending = ChatEntry.pending_for(
            content, self.current_user_id, self.conversation_id, message_type
        )
        self.composer_text = ""
        self._apply(pending)

        try:
            result = await self._api.send_message(
                self.recipient_id, content, message_type, client_token=pending.uuid
            )
        except MessagingError as error:
            if not self.closed:
                self.messages.remove_pending(pending.uuid)
                self.composer_text = content
                self._notify(scroll_to_bottom=False)
                logger.warning(f"send_failed recipient_id={self.recipient_id} error={error.detail}")
            raise

        confirmed = ChatEntry.from_message(result.message)
        if self.closed:
            return confirmed

        self._apply(confirmed)

        if self.conversation_id is None:
            self.conversation_id = result.conversation_id
            logger.info(f"session_attached conversation_id={self.conversation_id}")
            await self._connect()

        return confirmed

    async def mark_read(self) -> int:
        if self.conversation_id is None or self.closed:
            return 0
        return await self._api.mark_read(self.conversation_id)

    # Merge + notifications

    def _apply(self, entry: ChatEntry) -> Optional[MergeOutcome]:
        if self.closed:
            return None

        outcome = self.messages.merge(entry)
        if not entry.pending:
            if self._seen_until is None or entry.created_at > self._seen_until:
                self._seen_until = entry.created_at
        if outcome is not MergeOutcome.DUPLICATE:
            self._notify(scroll_to_bottom=outcome is MergeOutcome.APPENDED)
        return outcome

    def _notify(self, scroll_to_bottom: bool):
        if self._on_change is not None:
            self._on_change(self.messages.entries, scroll_to_bottom)

    def _set_state(self, state: SessionState):
        if state is self.state:
            return

        logger.info(
            f"session_state conversation_id={self.conversation_id} {self.state.value}->{state.value}"
        )
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    # Relay

    async def _connect(self):
        self._set_state(SessionState.CONNECTING)

        try:
            subscription = await self._relay.subscribe(self.conversation_id, self.current_user_id)
        except Exception as error:
            logger.warning(
                f"relay_subscribe_failed conversation_id={self.conversation_id} error={error!r}"
            )
            self._enter_degraded()
            return

        if self.closed:
            await subscription.close()
            return

        self._subscription = subscription
        subscription.add_status_listener(self._on_subscription_status)
        self._listen_task = asyncio.create_task(self._listen(subscription))

        if subscription.status is SubscriptionStatus.SUBSCRIBED:
            self._enter_live()
        elif subscription.status in FAILED_STATUSES:
            self._enter_degraded()
        else:
            self._grace_task = asyncio.create_task(self._await_acknowledgement(subscription))

    async def _await_acknowledgement(self, subscription: Subscription):
        try:
            await asyncio.wait_for(subscription.acknowledged.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            if self.state is SessionState.CONNECTING:
                logger.warning(
                    f"relay_ack_timeout conversation_id={self.conversation_id} grace={self.grace_period}s"
                )
                self._enter_degraded()
            return

        if self.state is SessionState.CONNECTING:
            self._enter_live()

    def _on_subscription_status(self, status: SubscriptionStatus, error: Optional[Exception]):
        if self.closed:
            return

        if status is SubscriptionStatus.SUBSCRIBED:
            recovered = self.state is SessionState.DEGRADED
            if self.state in (SessionState.CONNECTING, SessionState.DEGRADED):
                self._enter_live()
            if recovered:
                # Only the latest catch-up matters; it re-reads the same window
                if self._catch_up_task is not None and not self._catch_up_task.done():
                    self._catch_up_task.cancel()
                self._catch_up_task = asyncio.create_task(self._catch_up())

        elif status in FAILED_STATUSES:
            if self.state in (SessionState.CONNECTING, SessionState.LIVE):
                self._enter_degraded()

    async def _listen(self, subscription: Subscription):
        async for message in subscription:
            self._apply(ChatEntry.from_message(message))

    def _enter_live(self):
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        self._set_state(SessionState.LIVE)

    def _enter_degraded(self):
        self._set_state(SessionState.DEGRADED)
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll())

    async def _poll(self):
        while self.state is SessionState.DEGRADED:
            await asyncio.sleep(self.poll_interval)
            if self.state is not SessionState.DEGRADED:
                return
            try:
                await self.backfill()
            # Malformed bodies surface as ValueError (bad JSON or a schema mismatch)
            except (MessagingError, ValueError) as error:
                logger.warning(f"poll_failed conversation_id={self.conversation_id} error={error}")

    async def _catch_up(self):
        try:
            await self.backfill()
        except (MessagingError, ValueError) as error:
            logger.warning(f"catch_up_failed conversation_id={self.conversation_id} error={error}")
