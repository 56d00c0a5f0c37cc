"""
Tests for chunking and knowledge ingestion.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from services.ingestion_service import IngestionService, chunk_text, load_text_file
from services.theme_classifier import ThemeClassification
from utils.config import KNOWLEDGE_INDEX, VectorConfig
from utils.helpers import utc_now
from vector_memory_db.models.schemas import BatchOperationResult, BatchOperationStats


def words(count, prefix="w"):
    return " ".join(f"{prefix}{i:03d}" for i in range(count))


def batch_result(size):
    return BatchOperationResult(
        success=True,
        errors=[],
        stats=BatchOperationStats(
            total_items=size, processed_items=size, successful_items=size, start_time=utc_now()
        ),
    )


class TestChunking:

    def test_chunks_overlap_and_reference(self):
        chunks = chunk_text(words(100), "books/almanack.txt", title="Almanack", chunk_size=100, chunk_overlap=20)

        assert len(chunks) > 1
        first, second = chunks[0].content.split(), chunks[1].content.split()
        assert second[:2] == first[-2:]
        assert chunks[0].metadata.source_reference == "Almanack, Paragraph 1"
        assert chunks[1].metadata.source_reference == "Almanack, Paragraph 2"

    def test_reference_includes_chapter_and_defaults_to_file_name(self):
        chunks = chunk_text("a short text", "books/almanack.txt", chapter="3")
        assert chunks[0].metadata.source_reference == "almanack.txt, Chapter 3, Paragraph 1"

    def test_every_word_is_covered(self):
        text = words(257)
        chunks = chunk_text(text, "f.txt", chunk_size=120, chunk_overlap=30)

        covered = []
        for chunk in chunks:
            covered.extend(w for w in chunk.content.split() if w not in covered)
        assert covered == text.split()

    def test_no_tail_made_only_of_overlap(self):
        # Each word is 4 characters plus a space, so 20 words fill a chunk exactly
        chunks = chunk_text(words(20), "f.txt", chunk_size=100, chunk_overlap=30)
        assert len(chunks) == 1

    def test_empty_text_has_no_chunks(self):
        assert chunk_text("   \n ", "f.txt") == []

    def test_load_text_file_uses_file_name_as_title(self, tmp_path):
        path = tmp_path / "wealth.md"
        path.write_text("Seek wealth, not money or status.", encoding="utf-8")

        chunks = load_text_file(str(path))
        assert chunks[0].metadata.title == "wealth"
        assert chunks[0].source_file == str(path)


class TestIngestionService:

    def make_service(self, llm, max_batch_size=2):
        vector_service = MagicMock()
        vector_service.config = VectorConfig(max_batch_size=max_batch_size)
        vector_service.upsert_batch = AsyncMock(side_effect=lambda index, entries: batch_result(len(entries)))
        classifier = AsyncMock()
        classifier.batch_classify_themes.side_effect = lambda texts: [
            ThemeClassification(themes=["happiness"]) for _ in texts
        ]
        return IngestionService(vector_service, llm, classifier)

    @pytest.mark.asyncio
    async def test_ingest_slices_by_max_batch_size(self, llm):
        service = self.make_service(llm)
        chunks = chunk_text(words(200), "f.txt", title="Book", chunk_size=100, chunk_overlap=0)

        stats = await service.ingest_chunks(chunks)

        calls = service.vector_service.upsert_batch.await_args_list
        assert [len(c.args[1]) for c in calls] == [2] * (len(chunks) // 2) + ([1] if len(chunks) % 2 else [])
        assert all(c.args[0] == KNOWLEDGE_INDEX for c in calls)
        assert stats.total_items == len(chunks)
        assert stats.successful_items == len(chunks)
        assert stats.failed_items == 0

    @pytest.mark.asyncio
    async def test_entries_carry_themes_and_stable_ids(self, llm):
        service = self.make_service(llm, max_batch_size=100)
        chunks = chunk_text("Happiness is a choice.", "f.txt", title="Book")

        await service.ingest_chunks(chunks)
        entry = service.vector_service.upsert_batch.await_args.args[1][0]

        assert entry.metadata["themes"] == ["happiness"]
        assert entry.metadata["content"] == "Happiness is a choice."
        assert entry.metadata["source_reference"] == "Book, Paragraph 1"
        assert len(entry.vector) == llm.dimension

        again = self.make_service(llm, max_batch_size=100)
        await again.ingest_chunks(chunk_text("Happiness is a choice.", "f.txt", title="Book"))
        assert again.vector_service.upsert_batch.await_args.args[1][0].id == entry.id

    @pytest.mark.asyncio
    async def test_empty_input_skips_everything(self, llm):
        service = self.make_service(llm)

        stats = await service.ingest_chunks([])

        assert stats.total_items == 0
        service.vector_service.upsert_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ingest_directory(self, llm, tmp_path):
        (tmp_path / "a.txt").write_text("Play long-term games.", encoding="utf-8")
        (tmp_path / "b.pdf").write_bytes(b"%PDF")
        service = self.make_service(llm)

        stats = await service.ingest_directory(str(tmp_path))
        assert stats.total_items == 1

        with pytest.raises(FileNotFoundError):
            await service.ingest_directory(str(tmp_path / "missing"))
