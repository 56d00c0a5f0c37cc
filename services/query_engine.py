"""
Question answering over the knowledge index.
"""

import json
import logging
from typing import List, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from prompts.rag_prompts import ANSWER_SYSTEM_PROMPT, ANSWER_USER_PROMPT, STRUCTURED_ANSWER_SYSTEM_PROMPT
from utils.config import KNOWLEDGE_INDEX
from utils.helpers import clean_json_response
from vector_memory_db.models.schemas import QueryFilter, QueryOptions, SimilaritySearchResult

logger = logging.getLogger(__name__)


class AnswerSource(BaseModel):
    content: str
    relevance: float = Field(0.0, ge=0.0, le=1.0)


class StructuredAnswer(BaseModel):
    answer: str
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    sources: List[AnswerSource] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)


def format_context(results: List[SimilaritySearchResult]) -> str:
    parts = []
    for i, result in enumerate(results, start=1):
        reference = result.metadata.get("source_reference", result.id)
        parts.append(f"[{i}] ({reference})\n{result.metadata.get('content', '')}")
    return "\n\n".join(parts)


class QueryEngine:
    """Retrieves relevant chunks and asks the model to answer from them"""

    def __init__(self, vector_service, llm_service, index_name: str = KNOWLEDGE_INDEX, top_k: Optional[int] = None):
        self.vector_service = vector_service
        self.llm_service = llm_service
        self.index_name = index_name
        self.top_k = top_k

    async def find_relevant_chunks(
        self, query: str, themes: Optional[List[str]] = None
    ) -> List[SimilaritySearchResult]:
        embeddings = await self.llm_service.generate_embeddings([query])
        options = QueryOptions(
            top_k=self.top_k,
            filter=QueryFilter(themes=themes) if themes else None,
        )
        results = await self.vector_service.query_vectors(self.index_name, embeddings[0], options)
        logger.info(f"Retrieved {len(results)} chunks for query")
        return results

    async def answer_query(
        self, query: str, structured: bool = False, themes: Optional[List[str]] = None
    ) -> Union[str, StructuredAnswer]:
        """
        Answer a question from the knowledge base.

        In structured mode the model is asked for JSON; if its output cannot be
        parsed the raw text is returned instead.
        """
        results = await self.find_relevant_chunks(query, themes)
        messages = [
            {"role": "system", "content": STRUCTURED_ANSWER_SYSTEM_PROMPT if structured else ANSWER_SYSTEM_PROMPT},
            {"role": "user", "content": ANSWER_USER_PROMPT.format(context=format_context(results), query=query)},
        ]

        response = await self.llm_service.chat(messages, json_mode=structured)
        content = response.content or ""
        if not structured:
            return content

        try:
            return StructuredAnswer.model_validate(json.loads(clean_json_response(content)))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"Could not parse structured answer, returning raw text: {e}")
            return content
