"""
Document ingestion into the knowledge index.

Text is split into overlapping word-based chunks, tagged with themes,
embedded, and upserted through the vector service in slices no larger
than the maximum batch size.
"""

import logging
import os
from typing import List, Optional

from pydantic import BaseModel, Field

from utils.config import KNOWLEDGE_INDEX
from utils.helpers import content_hash, utc_now
from vector_memory_db.models.schemas import BatchOperationStats, VectorEntry

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".txt", ".md")


class ChunkMetadata(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    chapter: Optional[str] = None
    themes: List[str] = Field(default_factory=list)
    source_reference: str


class DocumentChunk(BaseModel):
    content: str = Field(..., min_length=1)
    source_file: str
    metadata: ChunkMetadata


def _source_reference(source_file: str, title: Optional[str], chapter: Optional[str], paragraph: int) -> str:
    reference = title or os.path.basename(source_file)
    if chapter:
        reference += f", Chapter {chapter}"
    return f"{reference}, Paragraph {paragraph}"


def chunk_text(
    text: str,
    source_file: str,
    title: Optional[str] = None,
    author: Optional[str] = None,
    chapter: Optional[str] = None,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> List[DocumentChunk]:
    """
    Split text into chunks of roughly ``chunk_size`` characters.

    Consecutive chunks share the last ``chunk_overlap // 10`` words of the
    previous chunk. Themes are filled in later by the ingestion service.
    """
    words = text.split()
    overlap_words = chunk_overlap // 10
    chunks: List[DocumentChunk] = []
    current: List[str] = []
    current_length = 0
    new_words = 0

    def emit():
        paragraph = len(chunks) + 1
        chunks.append(
            DocumentChunk(
                content=" ".join(current),
                source_file=source_file,
                metadata=ChunkMetadata(
                    title=title,
                    author=author,
                    chapter=chapter,
                    source_reference=_source_reference(source_file, title, chapter, paragraph),
                ),
            )
        )

    for word in words:
        current.append(word)
        current_length += len(word) + 1
        new_words += 1

        if current_length >= chunk_size:
            emit()
            current = current[-overlap_words:] if overlap_words else []
            current_length = len(" ".join(current))
            new_words = 0

    # The tail only counts if it holds words beyond the carried-over overlap
    if current and new_words:
        emit()

    return chunks


def load_text_file(path: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> List[DocumentChunk]:
    """Read a plain text file and chunk it, using the file name as the title"""
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    title = os.path.splitext(os.path.basename(path))[0]
    chunks = chunk_text(text, path, title=title, chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    logger.info(f"Generated {len(chunks)} chunks from {path}")
    return chunks


class IngestionService:
    """Service for loading documents into the knowledge index"""

    def __init__(self, vector_service, llm_service, theme_classifier, index_name: str = KNOWLEDGE_INDEX):
        self.vector_service = vector_service
        self.llm_service = llm_service
        self.theme_classifier = theme_classifier
        self.index_name = index_name

    async def ingest_chunks(self, chunks: List[DocumentChunk]) -> BatchOperationStats:
        """Classify, embed and upsert chunks; returns stats summed over all slices"""
        stats = BatchOperationStats(total_items=len(chunks), start_time=utc_now())
        if not chunks:
            stats.end_time = stats.start_time
            stats.duration_ms = 0.0
            return stats

        logger.info("Classifying themes for chunks...")
        classifications = await self.theme_classifier.batch_classify_themes([c.content for c in chunks])
        for chunk, classification in zip(chunks, classifications):
            chunk.metadata.themes = classification.themes

        max_batch_size = self.vector_service.config.max_batch_size
        for start in range(0, len(chunks), max_batch_size):
            batch = chunks[start:start + max_batch_size]

            logger.info(f"Generating embeddings for chunks {start + 1}-{start + len(batch)}...")
            embeddings = await self.llm_service.generate_embeddings([c.content for c in batch])

            entries = [
                VectorEntry(
                    id=content_hash(f"{chunk.source_file}:{chunk.metadata.source_reference}"),
                    vector=embedding,
                    metadata={
                        "content": chunk.content,
                        "source_file": chunk.source_file,
                        **chunk.metadata.model_dump(exclude_none=True),
                    },
                )
                for chunk, embedding in zip(batch, embeddings)
            ]
            result = await self.vector_service.upsert_batch(self.index_name, entries)

            stats.processed_items += result.stats.processed_items
            stats.successful_items += result.stats.successful_items
            stats.failed_items += result.stats.failed_items
            if not result.success:
                logger.warning(f"{len(result.errors)} chunk(s) failed to upsert in slice starting at {start}")

        stats.end_time = utc_now()
        stats.duration_ms = (stats.end_time - stats.start_time).total_seconds() * 1000
        logger.info(
            f"Ingested {stats.successful_items}/{stats.total_items} chunks into {self.index_name}"
        )
        return stats

    async def ingest_directory(self, directory: str) -> BatchOperationStats:
        """Ingest every supported file directly inside ``directory``"""
        if not os.path.isdir(directory):
            raise FileNotFoundError(f"Data directory not found: {directory}")

        chunks: List[DocumentChunk] = []
        for name in sorted(os.listdir(directory)):
            path = os.path.join(directory, name)
            if os.path.isfile(path) and name.lower().endswith(SUPPORTED_EXTENSIONS):
                chunks.extend(load_text_file(path))
            else:
                logger.debug(f"Skipping unsupported file {path}")

        return await self.ingest_chunks(chunks)
