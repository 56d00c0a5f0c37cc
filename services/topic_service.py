"""
Topic segmentation for conversations.

Each conversation has at most one active topic segment. A detected topic
change completes it and opens the next one; completed segments never reopen.
"""

import logging
import math
from typing import List, Optional, Protocol, Sequence

from database.firebase_service import METADATA_PATH, TOPICS_PATH, FirebaseService
from models.conversation import Message, TopicSegment, TopicStatus
from services.conversation_service import ConversationService
from utils.config import MemoryConfig
from utils.errors import CorruptedDataError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class SimilarityScorer(Protocol):
    async def score(self, message: Message, context: Sequence[Message]) -> float:
        ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingSimilarityScorer:
    """Cosine similarity between a message and the centroid of its context"""

    def __init__(self, llm_service):
        self.llm_service = llm_service

    async def score(self, message: Message, context: Sequence[Message]) -> float:
        context_texts = [m.content for m in context if m.content]
        if not context_texts or not message.content:
            return 1.0

        embeddings = await self.llm_service.generate_embeddings([message.content] + context_texts)
        target, rest = embeddings[0], embeddings[1:]
        centroid = [sum(values) / len(rest) for values in zip(*rest)]
        return cosine_similarity(target, centroid)


class TopicService:
    """Service for topic detection and segment lifecycle"""

    def __init__(
        self,
        store: FirebaseService,
        conversations: ConversationService,
        scorer: SimilarityScorer,
        config: Optional[MemoryConfig] = None,
    ):
        self.store = store
        self.conversations = conversations
        self.scorer = scorer
        self.config = config or MemoryConfig()

    def _topic_path(self, conversation_id: str, topic_id: Optional[str] = None) -> str:
        sub_path = f"{TOPICS_PATH}/{topic_id}" if topic_id else TOPICS_PATH
        return self.store.get_conversation_path(conversation_id, sub_path)

    async def get_topic(self, conversation_id: str, topic_id: str) -> Optional[TopicSegment]:
        if not topic_id:
            return None
        record = await self.store.get_data(self._topic_path(conversation_id, topic_id))
        if record is None:
            return None
        try:
            return TopicSegment.from_record(topic_id, record)
        except (ValueError, TypeError) as e:
            raise CorruptedDataError(f"Topic {topic_id} is unreadable: {e}") from e

    async def get_active_topics(self, conversation_id: str) -> List[TopicSegment]:
        records = await self.store.get_data(self._topic_path(conversation_id)) or {}
        active = []
        for topic_id, record in records.items():
            if isinstance(record, dict) and record.get("status", TopicStatus.ACTIVE.value) == TopicStatus.ACTIVE.value:
                active.append(TopicSegment.from_record(topic_id, record))
        return active

    async def create_topic_segment(
        self, conversation_id: str, start_message_id: str, themes: List[str]
    ) -> TopicSegment:
        """Open a new active segment; fails if another segment is still active"""
        active = await self.get_active_topics(conversation_id)
        if active:
            raise ValidationError(
                f"Conversation {conversation_id} already has active topic {active[0].id}"
            )

        segment = TopicSegment(
            start_message_id=start_message_id,
            themes=sorted(set(themes)),
            message_count=1 if start_message_id else 0,
        )
        segment.id = await self.store.push_data(self._topic_path(conversation_id), segment.to_record())
        logger.info(f"Opened topic {segment.id} in conversation {conversation_id}")
        return segment

    async def complete_topic_segment(
        self,
        conversation_id: str,
        topic_id: str,
        end_message_id: str,
        summary: Optional[str] = None,
    ) -> None:
        topic = await self.get_topic(conversation_id, topic_id)
        if topic is None:
            raise NotFoundError(f"Topic {topic_id} not found in conversation {conversation_id}")
        if topic.status == TopicStatus.COMPLETED:
            raise ValidationError(f"Topic {topic_id} is already completed")

        update = {"end_message_id": end_message_id, "status": TopicStatus.COMPLETED.value}
        if summary:
            update["summary"] = summary
        await self.store.update_data(self._topic_path(conversation_id, topic_id), update)
        logger.info(f"Completed topic {topic_id} in conversation {conversation_id}")

    async def detect_topic_change(
        self, conversation_id: str, new_message: Message, current_topic_id: Optional[str]
    ) -> bool:
        """True when the current topic is missing or the message drifts below the threshold"""
        current_topic = await self.get_topic(conversation_id, current_topic_id)
        if current_topic is None:
            return True

        recent = await self.conversations.get_last_messages(
            conversation_id, self.config.immediate_context_size
        )
        context = [m for m in recent if m.id != new_message.id]

        score = await self.scorer.score(new_message, context)
        logger.debug(f"Topic similarity for conversation {conversation_id}: {score:.3f}")
        return score < self.config.topic_change_threshold

    async def increment_message_count(
        self, conversation_id: str, topic_id: str, message_id: Optional[str] = None
    ) -> None:
        """
        Bump the segment's running count; no-op if the topic is gone.

        The segment opened with a new conversation has no start message yet,
        so the first tracked message fills it in.
        """
        topic = await self.get_topic(conversation_id, topic_id)
        if topic is None:
            return
        if message_id and not topic.start_message_id:
            await self.store.update_data(
                self._topic_path(conversation_id, topic_id), {"start_message_id": message_id}
            )
        await self.store.increment(self._topic_path(conversation_id, f"{topic_id}/message_count"))

    async def switch_topic(
        self,
        conversation_id: str,
        current_topic_id: Optional[str],
        end_message_id: str,
        start_message_id: str,
        themes: List[str],
    ) -> TopicSegment:
        """Complete the current segment (if still active) and open the next one"""
        current = await self.get_topic(conversation_id, current_topic_id)
        if current is not None and current.status == TopicStatus.ACTIVE:
            await self.complete_topic_segment(conversation_id, current.id, end_message_id)

        segment = await self.create_topic_segment(conversation_id, start_message_id, themes)
        await self.store.update_data(
            self.store.get_conversation_path(conversation_id, METADATA_PATH),
            {"current_topic_id": segment.id},
        )
        return segment
