"""
Hierarchical conversation summaries.

"recent" summaries are written from one chunk of raw messages; "global"
summaries are rolled up from earlier summaries only. Summaries are
immutable once stored.
"""

import logging
from typing import List, Optional, Sequence

from database.firebase_service import SUMMARIES_PATH, FirebaseService
from models.conversation import ConversationSummary, Message, SummaryLevel
from prompts.summary_prompts import build_global_summary_prompt, build_recent_summary_prompt
from utils.config import CONVERSATIONS_INDEX
from utils.errors import CorruptedDataError, ValidationError
from vector_memory_db.models.schemas import VectorEntry

logger = logging.getLogger(__name__)


class SummaryService:
    """Service for creating and reading conversation summaries"""

    def __init__(self, store: FirebaseService, llm_service, vector_service=None):
        """
        Args:
            store: Persistent store for summary records
            llm_service: Generates summary text and embeddings
            vector_service: When given, every summary is also indexed for recall
        """
        self.store = store
        self.llm_service = llm_service
        self.vector_service = vector_service

    def _summaries_path(self, conversation_id: str) -> str:
        return self.store.get_conversation_path(conversation_id, SUMMARIES_PATH)

    async def create_summary(
        self,
        conversation_id: str,
        level: SummaryLevel,
        content: str,
        themes: Sequence[str],
        segment_ids: Optional[List[str]] = None,
        user_id: Optional[str] = None,
    ) -> ConversationSummary:
        """Persist a new summary and return it with its assigned id"""
        summary = ConversationSummary(
            level=level,
            content=content,
            themes=list(dict.fromkeys(themes)),
            segment_ids=segment_ids or None,
        )
        summary.id = await self.store.push_data(self._summaries_path(conversation_id), summary.to_record())
        logger.info(f"Created {summary.level.value} summary {summary.id} for conversation {conversation_id}")

        await self._index_summary(conversation_id, summary, user_id)
        return summary

    async def _index_summary(
        self, conversation_id: str, summary: ConversationSummary, user_id: Optional[str]
    ) -> None:
        if self.vector_service is None:
            return
        try:
            embeddings = await self.llm_service.generate_embeddings([summary.content])
            metadata = {
                "session_id": conversation_id,
                "summary_id": summary.id,
                "level": summary.level.value,
                "themes": summary.themes,
                "timestamp": summary.timestamp.isoformat(),
                "content": summary.content,
            }
            if user_id:
                metadata["user_id"] = user_id
            entry = VectorEntry(
                id=f"{conversation_id}/{summary.id}", vector=embeddings[0], metadata=metadata
            )
            await self.vector_service.upsert_vector(CONVERSATIONS_INDEX, entry)
        except Exception as e:
            logger.error(f"Failed to index summary {summary.id} for conversation {conversation_id}: {e}")

    async def generate_recent_summary(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        themes: Sequence[str],
        segment_ids: Optional[List[str]] = None,
        user_id: Optional[str] = None,
    ) -> ConversationSummary:
        """Summarize one chunk of messages"""
        if not messages:
            raise ValidationError("Cannot summarize an empty message window")

        prompt = build_recent_summary_prompt(messages, themes)
        content = (await self.llm_service.generate_text(prompt)).strip()

        return await self.create_summary(
            conversation_id, SummaryLevel.RECENT, content, themes, segment_ids, user_id=user_id
        )

    async def generate_global_summary(
        self,
        conversation_id: str,
        recent_summaries: Sequence[ConversationSummary],
        user_id: Optional[str] = None,
    ) -> ConversationSummary:
        """Roll earlier summaries up into one; themes are the union of the inputs"""
        if not recent_summaries:
            raise ValidationError("Cannot build a global summary without input summaries")

        ordered = sorted(recent_summaries, key=lambda s: (s.timestamp, s.id))
        prompt = build_global_summary_prompt([s.content for s in ordered])
        content = (await self.llm_service.generate_text(prompt)).strip()

        themes = list(dict.fromkeys(theme for s in ordered for theme in s.themes))
        return await self.create_summary(
            conversation_id,
            SummaryLevel.GLOBAL,
            content,
            themes,
            segment_ids=[s.id for s in ordered],
            user_id=user_id,
        )

    async def get_summaries(self, conversation_id: str) -> List[ConversationSummary]:
        """All summaries of a conversation, newest first"""
        records = await self.store.get_data(self._summaries_path(conversation_id)) or {}
        summaries = []
        for summary_id, record in records.items():
            try:
                summaries.append(ConversationSummary.from_record(summary_id, record))
            except (ValueError, TypeError) as e:
                raise CorruptedDataError(f"Summary {summary_id} is unreadable: {e}") from e

        summaries.sort(key=lambda s: (s.timestamp, s.id), reverse=True)
        return summaries

    async def get_latest_summary(
        self, conversation_id: str, level: Optional[SummaryLevel] = None
    ) -> Optional[ConversationSummary]:
        for summary in await self.get_summaries(conversation_id):
            if level is None or summary.level == level:
                return summary
        return None
