"""
Vector operations service for Qdrant.

Each named index maps to a Qdrant collection with a fixed dimensionality.
Every write and query validates vector size first, runs under an
exponential backoff retry policy, and batch operations are split into
chunks processed with bounded concurrency.
"""

import asyncio
import functools
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from qdrant_client import QdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException

from utils.config import VectorConfig, VectorIndexConfig
from utils.errors import ValidationError, VectorStoreError, VectorStoreErrorType
from utils.helpers import utc_now

from .models.schemas import (
    BatchChunk,
    BatchItemError,
    BatchOperationResult,
    BatchOperationStats,
    BatchResult,
    QueryFilter,
    QueryOptions,
    SimilaritySearchResult,
    VectorEntry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Qdrant only accepts unsigned ints and UUIDs as point ids
POINT_ID_NAMESPACE = uuid.UUID("0c3f5a52-8a52-4d8e-9b7c-3f1e6a2d9b10")
ENTRY_ID_KEY = "entry_id"


def to_point_id(entry_id: Union[str, int]) -> Union[int, str]:
    """Map an entry id to a valid Qdrant point id, deterministically."""
    value = str(entry_id)
    # Only canonical ASCII decimals, so "007" and "7" stay distinct points
    if value.isascii() and value.isdigit() and str(int(value)) == value:
        return int(value)
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return str(uuid.uuid5(POINT_ID_NAMESPACE, value))


def create_batch_chunks(items: Sequence[T], chunk_size: int) -> List[BatchChunk]:
    """Split items into contiguous chunks of at most chunk_size."""
    if chunk_size < 1:
        raise ValidationError(f"Chunk size must be positive, got {chunk_size}")
    return [
        BatchChunk(items=list(items[i:i + chunk_size]), start_index=i)
        for i in range(0, len(items), chunk_size)
    ]


def build_query_filter(query_filter: Optional[QueryFilter]) -> Optional[models.Filter]:
    """Translate a QueryFilter into a Qdrant filter where every condition must hold."""
    if query_filter is None:
        return None

    conditions = []
    if query_filter.user_id:
        conditions.append(
            models.FieldCondition(key="user_id", match=models.MatchValue(value=query_filter.user_id))
        )
    if query_filter.session_id:
        conditions.append(
            models.FieldCondition(key="session_id", match=models.MatchValue(value=query_filter.session_id))
        )
    if query_filter.time_range:
        conditions.append(
            models.FieldCondition(
                key="timestamp",
                range=models.DatetimeRange(
                    gte=query_filter.time_range.start,
                    lte=query_filter.time_range.end,
                ),
            )
        )
    if query_filter.themes:
        conditions.append(
            models.FieldCondition(key="themes", match=models.MatchAny(any=list(query_filter.themes)))
        )

    return models.Filter(must=conditions) if conditions else None


def is_connection_error(error: BaseException) -> bool:
    if isinstance(error, (ResponseHandlingException, ConnectionError, TimeoutError)):
        return True
    return "timeout" in str(error).lower()


class VectorService:
    """Service for managing vector operations across named Qdrant collections"""

    def __init__(
        self,
        indices: Dict[str, VectorIndexConfig],
        config: Optional[VectorConfig] = None,
        client: Optional[QdrantClient] = None,
        url: str = "http://localhost:6333",
        api_key: Optional[str] = None,
        timeout: int = 30,
    ):
        """
        Initialize the vector service.

        Args:
            indices: Index name -> collection and dimensionality
            config: Retry and batching configuration
            client: Pre-built client; one is created in initialize() when omitted
        """
        self.indices = dict(indices)
        self.config = config or VectorConfig()
        self.client = client
        self.qdrant_url = url
        self.qdrant_api_key = api_key
        self.timeout = timeout

    async def initialize(self):
        """Connect to Qdrant and make sure every configured collection exists"""
        try:
            logger.info("🔄 Initializing vector service...")

            if self.client is None:
                self.client = QdrantClient(
                    url=self.qdrant_url, api_key=self.qdrant_api_key, timeout=self.timeout
                )

            collections = await self._run(self.client.get_collections)
            names = {c.name for c in collections.collections or []}

            for index in self.indices.values():
                if index.collection_name not in names:
                    await self._run(
                        self.client.create_collection,
                        collection_name=index.collection_name,
                        vectors_config=models.VectorParams(
                            size=index.dimensions, distance=models.Distance.COSINE
                        ),
                    )
                    logger.info(f"Created Qdrant collection '{index.collection_name}'")
                await self._create_indexes(index.collection_name)

            logger.info("✅ Vector service initialized successfully")

        except Exception as e:
            logger.error(f"❌ Failed to initialize vector service: {e}")
            raise VectorStoreError(
                VectorStoreErrorType.CONNECTION_ERROR,
                "Failed to initialize vector service",
                retryable=True,
                original_error=e,
            )

    async def _create_indexes(self, collection_name: str):
        """Create payload indexes used by query filters (best-effort)"""
        indexes = [
            ("user_id", models.PayloadSchemaType.KEYWORD),
            ("session_id", models.PayloadSchemaType.KEYWORD),
            ("themes", models.PayloadSchemaType.KEYWORD),
            ("timestamp", models.PayloadSchemaType.DATETIME),
        ]
        for field_name, field_schema in indexes:
            try:
                await self._run(
                    self.client.create_payload_index,
                    collection_name=collection_name,
                    field_name=field_name,
                    field_schema=field_schema,
                )
                logger.debug(f"Created index for {field_name} on {collection_name}")
            except Exception as e:
                logger.warning(f"⚠️ Index creation warning for {field_name}: {e}")

    async def _run(self, func: Callable[..., T], *args, **kwargs) -> T:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _get_client(self) -> QdrantClient:
        if self.client is None:
            raise VectorStoreError(
                VectorStoreErrorType.CONNECTION_ERROR,
                "Vector service not initialized",
                retryable=True,
            )
        return self.client

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def get_index_config(self, index_name: str) -> VectorIndexConfig:
        index = self.indices.get(index_name)
        if index is None:
            raise ValidationError(f"Invalid index name: {index_name}")
        return index

    def get_index_dimensions(self, index_name: str) -> int:
        return self.get_index_config(index_name).dimensions

    def validate_vector(self, index_name: str, vector: Any) -> None:
        expected = self.get_index_dimensions(index_name)
        if not isinstance(vector, (list, tuple)):
            raise ValidationError("Vector must be a list of numbers")
        if len(vector) != expected:
            raise ValidationError(
                f"Vector dimensions mismatch. Expected {expected}, got {len(vector)}"
            )

    def _validate_batch(self, index_name: str, entries: Sequence[VectorEntry]) -> None:
        self.get_index_config(index_name)
        if len(entries) == 0:
            raise ValidationError("Empty batch")
        if len(entries) > self.config.max_batch_size:
            raise ValidationError(
                f"Batch size {len(entries)} exceeds maximum of {self.config.max_batch_size}"
            )

    # ------------------------------------------------------------------
    # Retry and error classification
    # ------------------------------------------------------------------

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        error_type: VectorStoreErrorType,
        message: str,
    ) -> T:
        """Run operation, backing off exponentially between failed attempts"""
        last_error: Optional[BaseException] = None
        max_attempts = self.config.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except ValidationError:
                raise
            except Exception as e:
                last_error = e
                if attempt == max_attempts:
                    break
                delay_ms = self.config.backoff_ms * (2 ** (attempt - 1))
                logger.warning(
                    f"Retry attempt {attempt}/{max_attempts} for operation: {message} "
                    f"(next in {delay_ms}ms): {e}"
                )
                await asyncio.sleep(delay_ms / 1000)

        raise self._handle_error(last_error, error_type, message)

    def _handle_error(
        self, error: BaseException, error_type: VectorStoreErrorType, message: str
    ) -> VectorStoreError:
        if isinstance(error, VectorStoreError):
            return error
        retryable = error_type in (
            VectorStoreErrorType.CONNECTION_ERROR,
            VectorStoreErrorType.OPERATION_ERROR,
        ) or is_connection_error(error)
        return VectorStoreError(error_type, message, retryable=retryable, original_error=error)

    # ------------------------------------------------------------------
    # Single operations
    # ------------------------------------------------------------------

    def _to_point(self, entry: VectorEntry) -> models.PointStruct:
        payload = dict(entry.metadata)
        payload[ENTRY_ID_KEY] = entry.string_id
        return models.PointStruct(id=to_point_id(entry.id), vector=list(entry.vector), payload=payload)

    async def upsert_vector(self, index_name: str, entry: VectorEntry) -> None:
        """Store a single vector in the specified index"""
        self.validate_vector(index_name, entry.vector)
        collection = self.get_index_config(index_name).collection_name
        point = self._to_point(entry)
        client = self._get_client()

        await self._with_retry(
            lambda: self._run(client.upsert, collection_name=collection, points=[point]),
            VectorStoreErrorType.OPERATION_ERROR,
            f"Failed to upsert vector {entry.id} in index {index_name}",
        )
        logger.debug(f"Upserted vector {entry.id} in index {index_name}")

    async def delete_vector(self, index_name: str, entry_id: Union[str, int]) -> None:
        """Delete a single vector from the specified index"""
        collection = self.get_index_config(index_name).collection_name
        client = self._get_client()
        selector = models.PointIdsList(points=[to_point_id(entry_id)])

        await self._with_retry(
            lambda: self._run(client.delete, collection_name=collection, points_selector=selector),
            VectorStoreErrorType.OPERATION_ERROR,
            f"Failed to delete vector {entry_id} from index {index_name}",
        )
        logger.debug(f"Deleted vector {entry_id} from index {index_name}")

    async def query_vectors(
        self,
        index_name: str,
        vector: List[float],
        options: Optional[QueryOptions] = None,
    ) -> List[SimilaritySearchResult]:
        """
        Query vectors by similarity.

        Results scoring below the threshold are dropped; the rest keep the
        provider's descending-score order.
        """
        self.validate_vector(index_name, vector)
        collection = self.get_index_config(index_name).collection_name
        client = self._get_client()

        options = options or QueryOptions()
        top_k = options.top_k or self.config.default_top_k
        threshold = options.threshold if options.threshold is not None else self.config.default_threshold
        query_filter = build_query_filter(options.filter)

        def _query():
            return client.query_points(
                collection_name=collection,
                query=list(vector),
                query_filter=query_filter,
                limit=top_k,
                with_payload=True,
                with_vectors=True,
            )

        response = await self._with_retry(
            lambda: self._run(_query),
            VectorStoreErrorType.OPERATION_ERROR,
            f"Failed to query vectors in index {index_name}",
        )

        results = [self._to_result(point) for point in response.points]
        filtered = [result for result in results if result.score >= threshold]
        logger.debug(
            f"Query returned {len(filtered)}/{len(results)} results above {threshold} from index {index_name}"
        )
        return filtered

    def _to_result(self, point: models.ScoredPoint) -> SimilaritySearchResult:
        payload = dict(point.payload or {})
        entry_id = payload.pop(ENTRY_ID_KEY, None)
        vector = point.vector if isinstance(point.vector, list) else []
        return SimilaritySearchResult(
            id=str(entry_id if entry_id is not None else point.id),
            score=point.score,
            vector=vector,
            metadata=payload,
        )

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    async def upsert_batch(
        self,
        index_name: str,
        entries: Sequence[VectorEntry],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchOperationResult:
        """Batch upsert vectors in chunks with bounded concurrency"""
        self._validate_batch(index_name, entries)
        logger.info(f"Starting batch upsert of {len(entries)} vectors to index {index_name}")
        chunks = create_batch_chunks(entries, self.config.chunk_size)
        return await self._process_batch_chunks(index_name, chunks, "upsert", cancel_event)

    async def delete_batch(
        self,
        index_name: str,
        entries: Sequence[VectorEntry],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchOperationResult:
        """Batch delete vectors in chunks with bounded concurrency"""
        self._validate_batch(index_name, entries)
        logger.info(f"Starting batch delete of {len(entries)} vectors from index {index_name}")
        chunks = create_batch_chunks(entries, self.config.chunk_size)
        return await self._process_batch_chunks(index_name, chunks, "delete", cancel_event)

    async def _process_batch_chunk(
        self, index_name: str, chunk: BatchChunk, operation: str
    ) -> BatchResult:
        collection = self.get_index_config(index_name).collection_name
        message = f"Failed to {operation} batch chunk starting at index {chunk.start_index}"
        size = len(chunk.items)

        try:
            client = self._get_client()
            if operation == "upsert":
                for item in chunk.items:
                    self.validate_vector(index_name, item.vector)
                points = [self._to_point(item) for item in chunk.items]
                call = lambda: self._run(client.upsert, collection_name=collection, points=points)
            else:
                selector = models.PointIdsList(points=[to_point_id(item.id) for item in chunk.items])
                call = lambda: self._run(client.delete, collection_name=collection, points_selector=selector)

            logger.debug(f"Processing {operation} chunk of {size} items starting at {chunk.start_index}")
            await self._with_retry(call, VectorStoreErrorType.BATCH_ERROR, message)
            return BatchResult(success=True, processed_items=size, successful_items=size)

        except ValidationError as e:
            error = VectorStoreError(VectorStoreErrorType.VALIDATION_ERROR, str(e), original_error=e)
            return self._failed_chunk(chunk, error)
        except VectorStoreError as e:
            logger.error(f"Failed to process chunk starting at index {chunk.start_index}: {e}")
            return self._failed_chunk(chunk, e)

    def _failed_chunk(self, chunk: BatchChunk, error: VectorStoreError) -> BatchResult:
        size = len(chunk.items)
        return BatchResult(
            success=False,
            failed_indices=list(range(chunk.start_index, chunk.start_index + size)),
            error=BatchItemError(
                index=chunk.start_index,
                error_type=error.error_type,
                message=str(error),
                retryable=error.retryable,
            ),
            processed_items=size,
            failed_items=size,
        )

    async def _process_batch_chunks(
        self,
        index_name: str,
        chunks: List[BatchChunk],
        operation: str,
        cancel_event: Optional[asyncio.Event],
    ) -> BatchOperationResult:
        stats = BatchOperationStats(
            total_items=sum(len(chunk.items) for chunk in chunks),
            start_time=utc_now(),
        )
        semaphore = asyncio.Semaphore(self.config.max_concurrent_batches)

        async def _bounded(chunk: BatchChunk) -> BatchResult:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return self._failed_chunk(
                        chunk,
                        VectorStoreError(
                            VectorStoreErrorType.BATCH_ERROR,
                            f"Batch {operation} cancelled before chunk {chunk.start_index} started",
                            retryable=True,
                        ),
                    )
                return await self._process_batch_chunk(index_name, chunk, operation)

        results = await asyncio.gather(*(_bounded(chunk) for chunk in chunks))

        errors: List[BatchItemError] = []
        for result in results:
            stats.processed_items += result.processed_items
            stats.successful_items += result.successful_items
            stats.failed_items += result.failed_items
            if not result.success and result.error is not None:
                errors.extend(
                    result.error.model_copy(update={"index": index}) for index in result.failed_indices
                )

        stats.end_time = utc_now()
        stats.duration_ms = (stats.end_time - stats.start_time).total_seconds() * 1000

        logger.info(
            f"Batch {operation} on {index_name} completed in {stats.duration_ms:.0f}ms: "
            f"{stats.successful_items}/{stats.total_items} succeeded, {stats.failed_items} failed"
        )
        return BatchOperationResult(success=not errors, errors=errors, stats=stats)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def health_check(self) -> Dict[str, Any]:
        """Check vector store health"""
        try:
            client = self._get_client()
            collections = await self._run(client.get_collections)
            names = {c.name for c in collections.collections or []}

            return {
                "status": "healthy",
                "indices": {
                    name: {
                        "collection_name": index.collection_name,
                        "collection_exists": index.collection_name in names,
                        "dimensions": index.dimensions,
                    }
                    for name, index in self.indices.items()
                },
            }

        except Exception as e:
            logger.error(f"❌ Vector store health check failed: {e}")
            return {"status": "error", "message": str(e)}

    async def close(self):
        """Close the Qdrant client"""
        try:
            if self.client:
                self.client.close()
                self.client = None
                logger.info("✅ Vector service closed")
        except Exception as e:
            logger.error(f"❌ Error closing vector service: {e}")
