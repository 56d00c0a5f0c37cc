"""
Data models for conversations, messages, topic segments and summaries.

In memory every timestamp is an aware UTC datetime. The persistent store
keeps epoch milliseconds; ``to_record`` / ``from_record`` are the only
places that convert between the two.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from utils.helpers import from_store_timestamp, to_store_timestamp, utc_now

TIMESTAMP_FIELDS = ("timestamp", "start_time", "last_activity")


def _record_from_model(model: BaseModel, exclude: set) -> Dict[str, Any]:
    data = model.model_dump(exclude=exclude, exclude_none=True, mode="python")
    for key in TIMESTAMP_FIELDS:
        if isinstance(data.get(key), datetime):
            data[key] = to_store_timestamp(data[key])
    for key, value in list(data.items()):
        if isinstance(value, Enum):
            data[key] = value.value
    return data


def _model_input_from_record(record: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(record)
    for key in TIMESTAMP_FIELDS:
        if key in data and data[key] is not None:
            data[key] = from_store_timestamp(data[key])
    return data


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageKind(str, Enum):
    USER = "user"
    ASSISTANT_TEXT = "assistant_text"
    ASSISTANT_TOOL_CALL = "assistant_tool_call"
    TOOL_RESULT = "tool_result"


class ToolCall(BaseModel):
    """A function invocation requested by the assistant"""

    id: str
    name: str
    arguments: str = "{}"


class _MessageBase(BaseModel):
    id: Optional[str] = None
    content: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    themes: List[str] = Field(default_factory=list)
    embedding_id: Optional[str] = None

    @property
    def role(self) -> str:
        return "assistant"

    def to_record(self) -> Dict[str, Any]:
        """Store representation, without the id (the store assigns it)"""
        return _record_from_model(self, exclude={"id"})


class UserMessage(_MessageBase):
    kind: Literal["user"] = "user"

    @property
    def role(self) -> str:
        return "user"


class AssistantTextMessage(_MessageBase):
    kind: Literal["assistant_text"] = "assistant_text"


class AssistantToolCallMessage(_MessageBase):
    kind: Literal["assistant_tool_call"] = "assistant_tool_call"
    tool_calls: List[ToolCall] = Field(..., min_length=1)


class ToolResultMessage(_MessageBase):
    kind: Literal["tool_result"] = "tool_result"
    tool_call_id: str = Field(..., min_length=1)


Message = Annotated[
    Union[UserMessage, AssistantTextMessage, AssistantToolCallMessage, ToolResultMessage],
    Field(discriminator="kind"),
]

_message_adapter = TypeAdapter(Message)


def message_from_record(message_id: str, record: Dict[str, Any]) -> Message:
    """Rebuild a stored message"""
    data = _model_input_from_record(record)
    data["id"] = message_id
    return _message_adapter.validate_python(data)


def message_sort_key(message: _MessageBase):
    # Push ids are chronological, so they break timestamp ties in insertion order
    return (message.timestamp, message.id or "")


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

class ConversationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class ConversationMetadata(BaseModel):
    user_id: str
    status: ConversationStatus = ConversationStatus.ACTIVE
    start_time: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    message_count: int = Field(0, ge=0)
    current_topic_id: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return _record_from_model(self, exclude=set())

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ConversationMetadata":
        return cls.model_validate(_model_input_from_record(record))


class TopicStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class TopicSegment(BaseModel):
    id: str = ""
    start_message_id: str = ""
    end_message_id: Optional[str] = None
    themes: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    message_count: int = Field(0, ge=0)
    status: TopicStatus = TopicStatus.ACTIVE
    timestamp: datetime = Field(default_factory=utc_now)

    def to_record(self) -> Dict[str, Any]:
        return _record_from_model(self, exclude={"id"})

    @classmethod
    def from_record(cls, topic_id: str, record: Dict[str, Any]) -> "TopicSegment":
        data = _model_input_from_record(record)
        data["id"] = topic_id
        return cls.model_validate(data)


class SummaryLevel(str, Enum):
    RECENT = "recent"
    GLOBAL = "global"


class ConversationSummary(BaseModel):
    id: str = ""
    level: SummaryLevel
    content: str
    themes: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    segment_ids: Optional[List[str]] = None

    def to_record(self) -> Dict[str, Any]:
        return _record_from_model(self, exclude={"id"})

    @classmethod
    def from_record(cls, summary_id: str, record: Dict[str, Any]) -> "ConversationSummary":
        data = _model_input_from_record(record)
        data["id"] = summary_id
        return cls.model_validate(data)


class SessionContext(BaseModel):
    immediate: List[Message] = Field(default_factory=list)
    current_topic: TopicSegment
    recent_summary: Optional[ConversationSummary] = None
    global_summary: Optional[ConversationSummary] = None


class ConversationSession(BaseModel):
    id: str
    metadata: ConversationMetadata
    context: SessionContext


# ---------------------------------------------------------------------------
# Message processing results
# ---------------------------------------------------------------------------

class MessageOperation(str, Enum):
    STORE_MESSAGE = "STORE_MESSAGE"
    UPDATE_METADATA = "UPDATE_METADATA"
    GENERATE_SUMMARY = "GENERATE_SUMMARY"
    GET_METADATA = "GET_METADATA"


class MessageProcessingErrorType(str, Enum):
    CONVERSATION_NOT_FOUND = "CONVERSATION_NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"


class ProcessingError(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    operation: MessageOperation
    type: MessageProcessingErrorType
    error: Exception


class ProcessingResult(BaseModel):
    success: bool
    message_ids: List[str] = Field(default_factory=list)
    summary_pending: bool = False
    error: Optional[ProcessingError] = None
