"""
Message processor.

Single entry point for adding messages to a conversation. It keeps the
message counter consistent, optionally tracks topic segments, and hands
summary generation to the background summary queue whenever the count
reaches a multiple of the summary chunk size.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from models.conversation import (
    AssistantToolCallMessage,
    ConversationMetadata,
    ConversationSummary,
    Message,
    MessageOperation,
    MessageProcessingErrorType,
    ProcessingError,
    ProcessingResult,
    SummaryLevel,
    UserMessage,
)
from services.conversation_service import ConversationService
from services.summary_queue import SummaryQueue
from services.summary_service import SummaryService
from services.topic_service import TopicService
from utils.config import MemoryConfig
from utils.errors import CorruptedDataError, MemoryServiceError, NotFoundError, ParseError, ValidationError
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_ERRORS = (NotFoundError, ValidationError, CorruptedDataError, ParseError)


class MessageProcessor:
    """
    Coordinates message storage, counters, topic tracking and summaries.

    Summary generation runs on the summary queue, detached from the caller.
    Two triggers for overlapping windows may run concurrently when messages
    arrive faster than summaries complete; that race is accepted.
    """

    def __init__(
        self,
        conversations: ConversationService,
        summaries: SummaryService,
        summary_queue: SummaryQueue,
        topics: Optional[TopicService] = None,
        config: Optional[MemoryConfig] = None,
    ):
        self.conversations = conversations
        self.summaries = summaries
        self.summary_queue = summary_queue
        self.topics = topics
        self.config = config or MemoryConfig()

    def should_generate_summary(self, message_count: int) -> bool:
        return message_count > 0 and message_count % self.config.summary_chunk_size == 0

    async def add_message(self, conversation_id: str, message: Message) -> Message:
        """
        Store one message and update the conversation counters.

        Raises:
            NotFoundError: if the conversation does not exist
            StorageError: if the store keeps failing after retries
        """
        metadata = await self._with_retry(
            lambda: self.conversations.get_metadata(conversation_id),
            MessageOperation.GET_METADATA,
        )
        stored, _ = await self._store_message(conversation_id, metadata, message)
        return stored

    async def process_message_pair(
        self, conversation_id: str, user_message: Message, assistant_message: Message
    ) -> ProcessingResult:
        """
        Store a user message and the assistant reply as one unit.

        Never raises; failures come back as a structured result so callers
        can tell a missing conversation from storage trouble.
        """
        try:
            metadata = await self._with_retry(
                lambda: self.conversations.get_metadata(conversation_id),
                MessageOperation.GET_METADATA,
            )
        except MemoryServiceError as e:
            error_type = (
                MessageProcessingErrorType.CONVERSATION_NOT_FOUND
                if isinstance(e, NotFoundError)
                else MessageProcessingErrorType.STORAGE_ERROR
            )
            logger.error(f"Failed to load conversation {conversation_id}: {e}")
            return self._failure(MessageOperation.GET_METADATA, error_type, e, [])
        except Exception as e:
            logger.error(f"Unexpected error loading conversation {conversation_id}: {e}")
            return self._failure(
                MessageOperation.GET_METADATA, MessageProcessingErrorType.STORAGE_ERROR, e, []
            )

        message_ids: List[str] = []
        summary_pending = False
        for message in (user_message, assistant_message):
            try:
                stored, new_count = await self._store_message(conversation_id, metadata, message)
            except MemoryServiceError as e:
                logger.error(f"Error processing message pair for conversation {conversation_id}: {e}")
                operation = MessageOperation(e.operation) if e.operation else MessageOperation.STORE_MESSAGE
                return self._failure(
                    operation, MessageProcessingErrorType.STORAGE_ERROR, e, message_ids
                )
            except Exception as e:
                logger.error(f"Unexpected error processing message pair for conversation {conversation_id}: {e}")
                return self._failure(
                    MessageOperation.STORE_MESSAGE, MessageProcessingErrorType.STORAGE_ERROR, e, message_ids
                )
            message_ids.append(stored.id)
            summary_pending = summary_pending or self.should_generate_summary(new_count)

        return ProcessingResult(success=True, message_ids=message_ids, summary_pending=summary_pending)

    def _failure(
        self,
        operation: MessageOperation,
        error_type: MessageProcessingErrorType,
        error: Exception,
        message_ids: List[str],
    ) -> ProcessingResult:
        return ProcessingResult(
            success=False,
            message_ids=list(message_ids),
            summary_pending=False,
            error=ProcessingError(operation=operation, type=error_type, error=error),
        )

    async def _store_message(
        self, conversation_id: str, metadata: ConversationMetadata, message: Message
    ) -> Tuple[Message, int]:
        stored = await self._with_retry(
            lambda: self.conversations.add_message(conversation_id, message),
            MessageOperation.STORE_MESSAGE,
        )

        new_count = await self._with_retry(
            lambda: self.conversations.increment_message_count(conversation_id),
            MessageOperation.UPDATE_METADATA,
        )
        await self._with_retry(
            lambda: self.conversations.update_metadata(conversation_id, {"last_activity": utc_now()}),
            MessageOperation.UPDATE_METADATA,
        )

        if self.topics is not None and self.config.topic_tracking:
            await self._track_topic(conversation_id, stored)

        if self.should_generate_summary(new_count):
            self._schedule_summary(conversation_id, new_count, metadata)

        return stored, new_count

    # ------------------------------------------------------------------
    # Topic tracking (best-effort)
    # ------------------------------------------------------------------

    async def _track_topic(self, conversation_id: str, message: Message) -> None:
        try:
            metadata = await self.conversations.get_metadata(conversation_id)
            current_topic_id = metadata.current_topic_id

            if isinstance(message, UserMessage) and await self.topics.detect_topic_change(
                conversation_id, message, current_topic_id
            ):
                previous = await self.conversations.get_last_messages(conversation_id, 2)
                end_message_id = previous[1].id if len(previous) > 1 else message.id
                segment = await self.topics.switch_topic(
                    conversation_id,
                    current_topic_id,
                    end_message_id=end_message_id,
                    start_message_id=message.id,
                    themes=message.themes,
                )
                logger.info(f"Topic change in conversation {conversation_id}, new topic {segment.id}")
            elif current_topic_id:
                await self.topics.increment_message_count(conversation_id, current_topic_id, message.id)
        except Exception as e:
            logger.error(f"Topic tracking failed for conversation {conversation_id}: {e}")

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def _schedule_summary(
        self, conversation_id: str, message_count: int, metadata: ConversationMetadata
    ) -> None:
        logger.info(f"Scheduling summary for conversation {conversation_id} at message {message_count}")
        self.summary_queue.submit(
            f"{conversation_id}@{message_count}",
            lambda: self.generate_summaries(conversation_id, message_count, metadata),
        )

    async def gather_summary_window(self, conversation_id: str, message_count: int) -> List[Message]:
        """
        Messages covered by the summary triggered at ``message_count``.

        The window is the last ``summary_chunk_size`` messages. When it ends on
        an assistant tool call, the following message (the tool result) is
        pulled in as well if it has been stored already.
        """
        start_index = max(0, message_count - self.config.summary_chunk_size)
        window = await self.conversations.get_message_range(conversation_id, start_index, message_count)

        if window and isinstance(window[-1], AssistantToolCallMessage):
            extended = await self.conversations.get_message_range(
                conversation_id, start_index, message_count + 1
            )
            if len(extended) > len(window):
                logger.debug(f"Extended summary window of {conversation_id} past pending tool call")
                return extended
        return window

    async def generate_summaries(
        self, conversation_id: str, message_count: int, metadata: ConversationMetadata
    ) -> ConversationSummary:
        """Write the recent summary for a chunk, then roll up a global one when due"""
        messages = await self._with_retry(
            lambda: self.gather_summary_window(conversation_id, message_count),
            MessageOperation.GENERATE_SUMMARY,
        )
        if not messages:
            raise ValidationError(f"No messages found for summary of {conversation_id}")

        themes = list(dict.fromkeys(theme for m in messages for theme in m.themes))
        segment_ids = [metadata.current_topic_id] if metadata.current_topic_id else []

        recent = await self._with_retry(
            lambda: self.summaries.generate_recent_summary(
                conversation_id, messages, themes, segment_ids, user_id=metadata.user_id
            ),
            MessageOperation.GENERATE_SUMMARY,
        )
        await self._maybe_roll_up(conversation_id, metadata.user_id)
        return recent

    async def _maybe_roll_up(self, conversation_id: str, user_id: str) -> Optional[ConversationSummary]:
        summaries = await self._with_retry(
            lambda: self.summaries.get_summaries(conversation_id),
            MessageOperation.GENERATE_SUMMARY,
        )

        latest_global = None
        pending = []
        for summary in summaries:
            if summary.level == SummaryLevel.GLOBAL:
                latest_global = summary
                break
            pending.append(summary)

        if len(pending) < self.config.global_rollup_size:
            return None

        inputs = ([latest_global] if latest_global else []) + list(reversed(pending))
        return await self._with_retry(
            lambda: self.summaries.generate_global_summary(conversation_id, inputs, user_id=user_id),
            MessageOperation.GENERATE_SUMMARY,
        )

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def _with_retry(
        self, operation: Callable[[], Awaitable[T]], operation_type: MessageOperation
    ) -> T:
        """Retry with a fixed delay; the last error propagates unchanged"""
        retries = 0
        while True:
            try:
                return await operation()
            except NON_RETRYABLE_ERRORS as e:
                self._tag(e, operation_type)
                raise
            except Exception as e:
                if retries >= self.config.max_retries:
                    self._tag(e, operation_type)
                    raise
                retries += 1
                logger.warning(
                    f"{operation_type.value} failed, retry {retries}/{self.config.max_retries} "
                    f"in {self.config.retry_delay_ms}ms: {e}"
                )
                await asyncio.sleep(self.config.retry_delay_ms / 1000)

    @staticmethod
    def _tag(error: Exception, operation_type: MessageOperation) -> None:
        if isinstance(error, MemoryServiceError) and error.operation is None:
            error.operation = operation_type.value
