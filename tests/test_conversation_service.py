"""
Tests for the conversation store.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from models.conversation import (
    AssistantTextMessage,
    ConversationStatus,
    TopicStatus,
    UserMessage,
)
from utils.errors import CorruptedDataError, NotFoundError, ValidationError


class TestSessions:

    @pytest.mark.asyncio
    async def test_create_session(self, conversation_service, store):
        session = await conversation_service.create_session("u1")

        assert session.metadata.user_id == "u1"
        assert session.metadata.status == ConversationStatus.ACTIVE
        assert session.metadata.message_count == 0
        assert session.context.immediate == []
        assert session.context.current_topic.status == TopicStatus.ACTIVE
        assert session.context.current_topic.themes == []

        stored = store.data["conversations"][session.id]
        assert stored["metadata"]["current_topic_id"] == session.context.current_topic.id
        assert isinstance(stored["metadata"]["start_time"], int)
        assert session.context.current_topic.id in stored["topics"]
        assert await conversation_service.get_active_session_id("u1") == session.id

    @pytest.mark.asyncio
    async def test_create_session_requires_user(self, conversation_service):
        with pytest.raises(ValidationError):
            await conversation_service.create_session("")

    @pytest.mark.asyncio
    async def test_complete_session(self, conversation_service):
        session = await conversation_service.create_session("u1")
        await conversation_service.complete_session(session.id)

        metadata = await conversation_service.get_metadata(session.id)
        assert metadata.status == ConversationStatus.COMPLETED


class TestMessages:

    @pytest.mark.asyncio
    async def test_add_message_does_not_touch_count(self, conversation_service):
        session = await conversation_service.create_session("u1")
        stored = await conversation_service.add_message(session.id, UserMessage(content="hi"))

        assert stored.id
        assert stored.role == "user"
        metadata = await conversation_service.get_metadata(session.id)
        assert metadata.message_count == 0

    @pytest.mark.asyncio
    async def test_last_messages_newest_first_and_range_oldest_first(self, conversation_service):
        session = await conversation_service.create_session("u1")
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for i in range(6):
            await conversation_service.add_message(
                session.id, UserMessage(content=f"m{i}", timestamp=base + timedelta(seconds=i))
            )

        last = await conversation_service.get_last_messages(session.id, 3)
        assert [m.content for m in last] == ["m5", "m4", "m3"]

        window = await conversation_service.get_message_range(session.id, 1, 4)
        assert [m.content for m in window] == ["m1", "m2", "m3"]

        assert await conversation_service.get_last_messages(session.id, 0) == []
        assert len(await conversation_service.get_last_messages(session.id, 50)) == 6

    @pytest.mark.asyncio
    async def test_timestamp_ties_keep_insertion_order(self, conversation_service):
        session = await conversation_service.create_session("u1")
        same = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for content in ("first", "second", "third"):
            await conversation_service.add_message(session.id, AssistantTextMessage(content=content, timestamp=same))

        window = await conversation_service.get_message_range(session.id, 0, 3)
        assert [m.content for m in window] == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_invalid_range(self, conversation_service):
        with pytest.raises(ValidationError):
            await conversation_service.get_message_range("c1", 5, 2)

    @pytest.mark.asyncio
    async def test_unreadable_message_is_corrupted(self, conversation_service, store):
        session = await conversation_service.create_session("u1")
        store.data["conversations"][session.id]["messages"] = {"-bad": {"kind": "mystery", "content": "?"}}

        with pytest.raises(CorruptedDataError):
            await conversation_service.get_last_messages(session.id, 5)


class TestMetadata:

    @pytest.mark.asyncio
    async def test_missing_conversation_is_not_found(self, conversation_service):
        with pytest.raises(NotFoundError):
            await conversation_service.get_metadata("nope")

    @pytest.mark.asyncio
    async def test_existing_conversation_without_metadata_is_corrupted(self, conversation_service, store):
        store.data["conversations"] = {"c1": {"messages": {"-a": {"kind": "user", "content": "x", "timestamp": 0}}}}

        with pytest.raises(CorruptedDataError):
            await conversation_service.get_metadata("c1")

    @pytest.mark.asyncio
    async def test_unreadable_timestamp_is_corrupted(self, conversation_service, store):
        session = await conversation_service.create_session("u1")
        store.data["conversations"][session.id]["metadata"]["last_activity"] = "yesterday"

        with pytest.raises(CorruptedDataError):
            await conversation_service.get_metadata(session.id)

    @pytest.mark.asyncio
    async def test_update_metadata_normalises_timestamps(self, conversation_service, store):
        session = await conversation_service.create_session("u1")
        when = datetime(2024, 6, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)

        await conversation_service.update_metadata(session.id, {"last_activity": when, "message_count": 4})

        raw = store.data["conversations"][session.id]["metadata"]
        assert raw["last_activity"] == int(when.timestamp() * 1000)
        metadata = await conversation_service.get_metadata(session.id)
        assert metadata.last_activity == when
        assert metadata.last_activity.tzinfo is not None
        assert metadata.message_count == 4

    @pytest.mark.asyncio
    async def test_update_metadata_rejects_unknown_fields(self, conversation_service):
        with pytest.raises(ValidationError):
            await conversation_service.update_metadata("c1", {"messageCount": 1})

    @pytest.mark.asyncio
    async def test_increment_message_count(self, conversation_service):
        session = await conversation_service.create_session("u1")

        counts = await asyncio.gather(*(conversation_service.increment_message_count(session.id) for _ in range(10)))

        assert sorted(counts) == list(range(1, 11))
        metadata = await conversation_service.get_metadata(session.id)
        assert metadata.message_count == 10
