"""
Data models and schemas for vector entries, queries and batch results.
"""

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, Field

from utils.errors import VectorStoreErrorType

T = TypeVar("T")


class VectorEntry(BaseModel):
    """Retrieval unit stored in a vector index."""

    id: Union[str, int] = Field(..., description="Entry identifier, normalised to a string for the index")
    vector: List[float] = Field(..., description="Embedding; length must match the index dimensions")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Content, source reference, themes")

    @property
    def string_id(self) -> str:
        return str(self.id)


class TimeRange(BaseModel):
    start: datetime
    end: datetime


class QueryFilter(BaseModel):
    """AND of field conditions applied by the provider."""

    user_id: Optional[str] = None
    session_id: Optional[str] = None
    time_range: Optional[TimeRange] = None
    themes: Optional[List[str]] = Field(None, description="Match entries tagged with any of these themes")


class QueryOptions(BaseModel):
    top_k: Optional[int] = Field(None, ge=1)
    threshold: Optional[float] = None
    filter: Optional[QueryFilter] = None


class SimilaritySearchResult(BaseModel):
    id: str
    score: float
    vector: List[float] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BatchChunk(BaseModel, Generic[T]):
    """Contiguous slice of a batch, remembering where it started."""

    items: List[T]
    start_index: int


class BatchItemError(BaseModel):
    index: int
    error_type: VectorStoreErrorType
    message: str
    retryable: bool


class BatchResult(BaseModel):
    """Outcome of one chunk."""

    success: bool
    failed_indices: List[int] = Field(default_factory=list)
    error: Optional[BatchItemError] = None
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0


class BatchOperationStats(BaseModel):
    total_items: int
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None


class BatchOperationResult(BaseModel):
    success: bool
    errors: List[BatchItemError] = Field(default_factory=list)
    stats: BatchOperationStats
