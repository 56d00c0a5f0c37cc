"""
Memory integration service.

Builds every memory component once from the application settings and
exposes the session level operations used by the HTTP API and the CLI:
starting or resuming sessions, assembling conversation context, and
enriching system prompts with it.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from database.firebase_service import FirebaseService
from models.conversation import (
    ConversationSession,
    ConversationStatus,
    SessionContext,
    SummaryLevel,
    TopicSegment,
)
from prompts.rag_prompts import AGENT_SYSTEM_PROMPT
from services.agent import Agent
from services.conversation_service import ConversationService
from services.ingestion_service import IngestionService
from services.llm_service import LLMService
from services.message_processor import MessageProcessor
from services.query_engine import QueryEngine
from services.summary_queue import SummaryQueue
from services.summary_service import SummaryService
from services.theme_classifier import ThemeClassifier
from services.topic_service import EmbeddingSimilarityScorer, TopicService
from utils.config import CONVERSATIONS_INDEX, Settings
from utils.errors import NotFoundError
from utils.helpers import utc_now
from vector_memory_db.models.schemas import QueryFilter, QueryOptions, SimilaritySearchResult
from vector_memory_db.vector_service import VectorService

logger = logging.getLogger(__name__)


class MemoryIntegration:
    """
    Composition root for the conversation memory system.

    Collaborators may be passed in (tests use fakes); anything omitted is
    built from the settings.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[FirebaseService] = None,
        vector_service: Optional[VectorService] = None,
        llm_service: Optional[LLMService] = None,
    ):
        self.settings = settings
        self.memory_config = settings.memory_config()

        self.store = store or FirebaseService(
            credentials_json=settings.FIREBASE_CREDENTIALS,
            database_url=settings.FIREBASE_DATABASE_URL,
        )
        self.vector_service = vector_service or VectorService(
            indices=settings.vector_indices(),
            config=settings.vector_config(),
            url=settings.QDRANT_URL,
            api_key=settings.QDRANT_API_KEY,
            timeout=settings.QDRANT_CONNECTION_TIMEOUT,
        )
        self.llm_service = llm_service or LLMService(
            openai_api_key=settings.OPENAI_API_KEY,
            generation_model=settings.GENERATION_MODEL,
            chat_model=settings.CHAT_MODEL,
            embedding_model=settings.EMBEDDING_MODEL,
            embedding_dimension=settings.EMBEDDING_DIMENSION,
            llm_api_key=settings.LLM_API_KEY or None,
            llm_base_url=settings.LLM_BASE_URL,
        )

        self.conversations = ConversationService(self.store)
        self.topics = TopicService(
            self.store,
            self.conversations,
            EmbeddingSimilarityScorer(self.llm_service),
            self.memory_config,
        )
        self.summaries = SummaryService(self.store, self.llm_service, self.vector_service)
        self.summary_queue = SummaryQueue(
            maxsize=self.memory_config.summary_queue_size,
            workers=self.memory_config.summary_workers,
        )
        self.processor = MessageProcessor(
            self.conversations,
            self.summaries,
            self.summary_queue,
            topics=self.topics,
            config=self.memory_config,
        )

        self.theme_classifier = ThemeClassifier(
            self.llm_service, settings.theme_config(), model=settings.THEME_MODEL
        )
        self.ingestion = IngestionService(self.vector_service, self.llm_service, self.theme_classifier)
        self.query_engine = QueryEngine(self.vector_service, self.llm_service)
        self.agent = Agent(self.processor, self.conversations, self.query_engine, self.llm_service)

        self.initialized = False

    async def initialize(self):
        """Connect the store and vector index and start the summary workers"""
        if not self.initialized:
            await self.store.initialize()
            await self.vector_service.initialize()
            self.summary_queue.start()
            self.initialized = True
            logger.info("Memory integration service initialized")

    async def close(self):
        await self.summary_queue.stop()
        await self.vector_service.close()
        self.initialized = False

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def start_session(self, user_id: str) -> ConversationSession:
        """
        Resume the user's active conversation or start a new one.

        A conversation idle for longer than the session timeout is completed
        and replaced by a fresh session.
        """
        conversation_id = await self.conversations.get_active_session_id(user_id)
        if conversation_id:
            try:
                metadata = await self.conversations.get_metadata(conversation_id)
            except NotFoundError:
                metadata = None

            if metadata is not None and metadata.status == ConversationStatus.ACTIVE:
                idle = utc_now() - metadata.last_activity
                if idle <= timedelta(milliseconds=self.memory_config.session_timeout_ms):
                    logger.info(f"Resuming conversation {conversation_id} for user {user_id}")
                    context = await self.get_conversation_context(conversation_id)
                    return ConversationSession(id=conversation_id, metadata=metadata, context=context)

                logger.info(f"Conversation {conversation_id} timed out after {idle}, starting a new one")
                await self.conversations.complete_session(conversation_id)

        return await self.conversations.create_session(user_id)

    async def end_session(self, conversation_id: str) -> None:
        await self.conversations.complete_session(conversation_id)

    async def get_conversation_context(self, conversation_id: str) -> SessionContext:
        metadata = await self.conversations.get_metadata(conversation_id)
        recent = await self.conversations.get_last_messages(
            conversation_id, self.memory_config.immediate_context_size
        )
        topic = await self.topics.get_topic(conversation_id, metadata.current_topic_id)

        return SessionContext(
            immediate=list(reversed(recent)),
            current_topic=topic or TopicSegment(),
            recent_summary=await self.summaries.get_latest_summary(conversation_id, SummaryLevel.RECENT),
            global_summary=await self.summaries.get_latest_summary(conversation_id, SummaryLevel.GLOBAL),
        )

    # ------------------------------------------------------------------
    # Recall and prompting
    # ------------------------------------------------------------------

    async def recall(self, user_id: str, query: str, limit: int = 5) -> List[SimilaritySearchResult]:
        """Summaries from any of the user's conversations relevant to query"""
        embeddings = await self.llm_service.generate_embeddings([query])
        options = QueryOptions(top_k=limit, filter=QueryFilter(user_id=user_id))
        return await self.vector_service.query_vectors(CONVERSATIONS_INDEX, embeddings[0], options)

    async def build_context_block(self, conversation_id: str, user_id: str, current_message: str) -> str:
        context = await self.get_conversation_context(conversation_id)
        parts = []

        if context.global_summary:
            parts.append(f"Conversation so far: {context.global_summary.content}")
        if context.recent_summary:
            parts.append(f"Recently: {context.recent_summary.content}")
        if context.current_topic.themes:
            parts.append(f"Current themes: {', '.join(context.current_topic.themes)}")

        memories = await self.recall(user_id, current_message)
        earlier = [m for m in memories if m.metadata.get("session_id") != conversation_id]
        if earlier:
            parts.append(
                "From earlier conversations:\n"
                + "\n".join(f"- {m.metadata.get('content', '')}" for m in earlier)
            )

        return "\n\n".join(parts)

    async def enhance_system_prompt(
        self, conversation_id: str, user_id: str, current_message: str, base_system_prompt: str
    ) -> str:
        """Append conversation memory to a system prompt; falls back to the base prompt"""
        try:
            context = await self.build_context_block(conversation_id, user_id, current_message)
        except Exception as e:
            logger.error(f"Failed to enhance system prompt: {e}")
            return base_system_prompt

        if not context:
            return base_system_prompt
        return f"{base_system_prompt}\n\nConversation memory:\n{context}"

    async def chat(self, conversation_id: str, user_id: str, message: str) -> str:
        system_prompt = await self.enhance_system_prompt(
            conversation_id, user_id, message, AGENT_SYSTEM_PROMPT
        )
        return await self.agent.run_agent(conversation_id, message, system_prompt=system_prompt)

    async def health_check(self) -> Dict[str, Any]:
        vector_health = await self.vector_service.health_check()
        return {
            "status": "healthy" if self.initialized and vector_health.get("status") == "healthy" else "degraded",
            "initialized": self.initialized,
            "vector_store": vector_health,
            "summary_queue": {
                "running": self.summary_queue.running,
                "failed_jobs": self.summary_queue.failed_jobs,
                "dropped_jobs": self.summary_queue.dropped_jobs,
            },
        }
