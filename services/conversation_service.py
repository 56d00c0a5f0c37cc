"""
Conversation store.

Durable session lifecycle, message history and metadata over the Firebase
Realtime Database. Message counting is left to the caller: ``add_message``
only appends.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from database.firebase_service import (
    CONVERSATIONS_PATH,
    MESSAGES_PATH,
    METADATA_PATH,
    TOPICS_PATH,
    USERS_PATH,
    FirebaseService,
)
from models.conversation import (
    ConversationMetadata,
    ConversationSession,
    ConversationStatus,
    Message,
    SessionContext,
    TopicSegment,
    message_from_record,
    message_sort_key,
)
from utils.errors import CorruptedDataError, NotFoundError, ValidationError
from utils.helpers import to_store_timestamp, utc_now

logger = logging.getLogger(__name__)

METADATA_FIELDS = set(ConversationMetadata.model_fields)


class ConversationService:
    """Service for conversation sessions and message history"""

    def __init__(self, store: FirebaseService):
        self.store = store

    def _path(self, conversation_id: str, sub_path: Optional[str] = None) -> str:
        return self.store.get_conversation_path(conversation_id, sub_path)

    async def create_session(self, user_id: str) -> ConversationSession:
        """
        Start a new conversation for a user.

        The session opens with an empty immediate context and one active topic
        segment, which is persisted and recorded as the current topic.
        """
        if not user_id:
            raise ValidationError("user_id is required to create a session")

        now = utc_now()
        metadata = ConversationMetadata(user_id=user_id, start_time=now, last_activity=now)
        conversation_id = await self.store.push_data(
            CONVERSATIONS_PATH, {METADATA_PATH: metadata.to_record()}
        )

        topic = TopicSegment(timestamp=now)
        topic.id = await self.store.push_data(self._path(conversation_id, TOPICS_PATH), topic.to_record())
        metadata.current_topic_id = topic.id

        await self.store.update_data(
            self._path(conversation_id, METADATA_PATH), {"current_topic_id": topic.id}
        )
        await self.store.set_data(f"{USERS_PATH}/{user_id}/active_conversation", conversation_id)

        logger.info(f"Created conversation {conversation_id} for user {user_id}")
        return ConversationSession(
            id=conversation_id,
            metadata=metadata,
            context=SessionContext(immediate=[], current_topic=topic),
        )

    async def get_active_session_id(self, user_id: str) -> Optional[str]:
        """Id of the user's most recently started conversation, if any"""
        return await self.store.get_data(f"{USERS_PATH}/{user_id}/active_conversation")

    async def add_message(self, conversation_id: str, message: Message) -> Message:
        """Append a message and return it with its assigned id"""
        message_id = await self.store.push_data(
            self._path(conversation_id, MESSAGES_PATH), message.to_record()
        )
        logger.debug(f"Stored {message.kind} message {message_id} in conversation {conversation_id}")
        return message.model_copy(update={"id": message_id})

    async def _load_messages(self, conversation_id: str) -> List[Message]:
        records = await self.store.get_data(self._path(conversation_id, MESSAGES_PATH)) or {}
        messages = []
        for message_id, record in records.items():
            try:
                messages.append(message_from_record(message_id, record))
            except (ValueError, TypeError) as e:
                raise CorruptedDataError(
                    f"Message {message_id} in conversation {conversation_id} is unreadable: {e}"
                ) from e
        messages.sort(key=message_sort_key)
        return messages

    async def get_last_messages(self, conversation_id: str, count: int) -> List[Message]:
        """Up to ``count`` most recent messages, newest first"""
        if count <= 0:
            return []
        messages = await self._load_messages(conversation_id)
        return list(reversed(messages[-count:]))

    async def get_message_range(
        self, conversation_id: str, start_index: int, end_index: int
    ) -> List[Message]:
        """Messages at chronological positions [start_index, end_index), oldest first"""
        if start_index < 0 or end_index < start_index:
            raise ValidationError(f"Invalid message range [{start_index}, {end_index})")
        messages = await self._load_messages(conversation_id)
        return messages[start_index:end_index]

    async def exists(self, conversation_id: str) -> bool:
        data = await self.store.get_data(self._path(conversation_id), shallow=True)
        return data is not None

    async def get_metadata(self, conversation_id: str) -> ConversationMetadata:
        record = await self.store.get_data(self._path(conversation_id, METADATA_PATH))

        if record is None:
            if await self.exists(conversation_id):
                raise CorruptedDataError(f"Conversation {conversation_id} has no metadata")
            raise NotFoundError(f"Conversation {conversation_id} not found")

        if not isinstance(record, dict):
            raise CorruptedDataError(f"Metadata for conversation {conversation_id} is not a record")

        try:
            return ConversationMetadata.from_record(record)
        except (ValueError, TypeError) as e:
            raise CorruptedDataError(
                f"Metadata for conversation {conversation_id} is unreadable: {e}"
            ) from e

    async def update_metadata(self, conversation_id: str, partial: Dict[str, Any]) -> None:
        """Merge fields into the metadata; datetimes are stored as epoch milliseconds"""
        unknown = set(partial) - METADATA_FIELDS
        if unknown:
            raise ValidationError(f"Unknown metadata fields: {sorted(unknown)}")

        record = {}
        for key, value in partial.items():
            if isinstance(value, datetime):
                value = to_store_timestamp(value)
            elif isinstance(value, Enum):
                value = value.value
            record[key] = value

        await self.store.update_data(self._path(conversation_id, METADATA_PATH), record)

    async def increment_message_count(self, conversation_id: str, delta: int = 1) -> int:
        """Atomically bump message_count and return the new value"""
        return await self.store.increment(
            self._path(conversation_id, f"{METADATA_PATH}/message_count"), delta
        )

    async def complete_session(self, conversation_id: str) -> None:
        await self.update_metadata(
            conversation_id,
            {"status": ConversationStatus.COMPLETED, "last_activity": utc_now()},
        )
        logger.info(f"Completed conversation {conversation_id}")
