"""Tests for the in-process delivery relay and subscriptions."""

import asyncio
from datetime import datetime, timezone

import pytest

from hazardwatch.messages.schemas import Message
from hazardwatch.realtime.relay import InMemoryRelay, Subscription, SubscriptionStatus
from hazardwatch.realtime.schemas import BroadcastEnvelope


def make_message(message_id: int, sender_id: int, conversation_id: int = 5, content: str = "hello"):
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        created_at=datetime(2025, 3, 1, 9, 0, message_id, tzinfo=timezone.utc),
    )


async def next_message(subscription: Subscription, timeout: float = 1.0) -> Message:
    return await asyncio.wait_for(subscription.__anext__(), timeout=timeout)


class TestInMemoryRelay:
    @pytest.mark.asyncio
    async def test_subscribers_receive_published_messages(self):
        relay = InMemoryRelay()
        subscription = await relay.subscribe(5, subscriber_id=12)

        assert subscription.status is SubscriptionStatus.SUBSCRIBED
        assert subscription.acknowledged.is_set()

        assert await relay.publish(5, make_message(1, sender_id=7)) is True

        received = await next_message(subscription)
        assert received.id == 1
        assert received.sender_id == 7

    @pytest.mark.asyncio
    async def test_own_messages_are_not_echoed(self):
        relay = InMemoryRelay()
        sender = await relay.subscribe(5, subscriber_id=7)
        recipient = await relay.subscribe(5, subscriber_id=12)

        await relay.publish(5, make_message(1, sender_id=7))
        await relay.publish(5, make_message(2, sender_id=12))

        assert (await next_message(recipient)).id == 1
        assert (await next_message(sender)).id == 2

        with pytest.raises(asyncio.TimeoutError):
            await next_message(sender, timeout=0.05)

    @pytest.mark.asyncio
    async def test_topics_are_isolated(self):
        relay = InMemoryRelay()
        other = await relay.subscribe(6, subscriber_id=12)

        await relay.publish(5, make_message(1, sender_id=7))

        with pytest.raises(asyncio.TimeoutError):
            await next_message(other, timeout=0.05)

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_no_replay(self):
        relay = InMemoryRelay()
        await relay.publish(5, make_message(1, sender_id=7))

        late = await relay.subscribe(5, subscriber_id=12)
        await relay.publish(5, make_message(2, sender_id=7))

        assert (await next_message(late)).id == 2

    @pytest.mark.asyncio
    async def test_publish_without_subscribers_succeeds(self):
        assert await InMemoryRelay().publish(5, make_message(1, sender_id=7)) is True

    @pytest.mark.asyncio
    async def test_close_ends_iteration_and_unsubscribes(self):
        relay = InMemoryRelay()
        statuses = []

        async with await relay.subscribe(5, subscriber_id=12) as subscription:
            subscription.add_status_listener(lambda status, error: statuses.append(status))
            assert relay.subscriber_count(5) == 1

        assert subscription.closed
        assert statuses == [SubscriptionStatus.CLOSED]
        assert relay.subscriber_count(5) == 0
        assert [m async for m in subscription] == []

    @pytest.mark.asyncio
    async def test_relay_close_releases_everything(self):
        relay = InMemoryRelay()
        first = await relay.subscribe(5, subscriber_id=7)
        second = await relay.subscribe(6, subscriber_id=12)

        await relay.close()

        assert first.closed and second.closed
        assert relay.subscriber_count(5) == 0


class TestSubscription:
    def test_topic_name(self):
        assert InMemoryRelay.topic(42) == "conversation-42"

    @pytest.mark.asyncio
    async def test_deliver_drops_foreign_conversation(self):
        subscription = Subscription(5, subscriber_id=12)
        envelope = BroadcastEnvelope.for_message(make_message(1, sender_id=7, conversation_id=9))

        assert subscription.deliver(envelope) is False

    @pytest.mark.asyncio
    async def test_full_queue_drops_instead_of_blocking(self):
        subscription = Subscription(5, subscriber_id=12, max_pending=2)

        results = [
            subscription.deliver(BroadcastEnvelope.for_message(make_message(i, sender_id=7)))
            for i in range(1, 4)
        ]

        assert results == [True, True, False]

    @pytest.mark.asyncio
    async def test_status_changes_toggle_acknowledgement(self):
        subscription = Subscription(5, subscriber_id=12)
        seen = []
        subscription.add_status_listener(lambda status, error: seen.append((status, error)))

        subscription.set_status(SubscriptionStatus.SUBSCRIBED)
        assert subscription.acknowledged.is_set()

        failure = RuntimeError("socket dropped")
        subscription.set_status(SubscriptionStatus.CHANNEL_ERROR, failure)
        assert not subscription.acknowledged.is_set()
        assert subscription.error is failure

        assert seen == [
            (SubscriptionStatus.SUBSCRIBED, None),
            (SubscriptionStatus.CHANNEL_ERROR, failure),
        ]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others(self):
        subscription = Subscription(5, subscriber_id=12)
        seen = []

        def broken(status, error):
            raise ValueError("listener bug")

        subscription.add_status_listener(broken)
        subscription.add_status_listener(lambda status, error: seen.append(status))

        subscription.set_status(SubscriptionStatus.SUBSCRIBED)

        assert seen == [SubscriptionStatus.SUBSCRIBED]


class TestBroadcastEnvelope:
    def test_wire_format_is_camel_case(self):
        envelope = BroadcastEnvelope.for_message(make_message(3, sender_id=7))

        wire = envelope.to_wire()

        assert wire["type"] == "NEW_MESSAGE"
        assert wire["conversationId"] == 5
        assert wire["message"]["senderId"] == 7
        assert wire["message"]["createdAt"].startswith("2025-03-01T09:00:03")
        assert BroadcastEnvelope.model_validate(wire).message.id == 3
