"""Tests for the conversation event channel."""

import pytest

from chat_orchestrator.conversation.events import ConversationEvent, EventChannel


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_publish_reaches_every_subscriber(self):
        channel = EventChannel()
        seen_a, seen_b = [], []

        async def handler_a(event):
            seen_a.append(event.type)

        async def handler_b(event):
            seen_b.append(event.conversation_id)

        channel.subscribe(handler_a)
        channel.subscribe(handler_b)
        channel.publish(ConversationEvent(type="new_message", conversation_id="c1"))
        await channel.drain()

        assert seen_a == ["new_message"]
        assert seen_b == ["c1"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        channel = EventChannel()
        seen = []

        async def handler(event):
            seen.append(event)

        unsubscribe = channel.subscribe(handler)
        unsubscribe()
        unsubscribe()
        channel.publish(ConversationEvent(type="new_message", conversation_id="c1"))
        await channel.drain()

        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self):
        channel = EventChannel()
        seen = []

        async def broken(event):
            raise RuntimeError("socket closed")

        async def healthy(event):
            seen.append(event.type)

        channel.subscribe(broken)
        channel.subscribe(healthy)
        channel.publish(ConversationEvent(type="new_message", conversation_id="c1"))
        await channel.drain()

        assert seen == ["new_message"]
