"""
Language model access: text generation, chat with tools, and embeddings.

Generation can be pointed at any OpenAI compatible endpoint; embeddings
always go to OpenAI with a fixed output dimensionality so they match the
vector indices.
"""

import logging
from typing import Any, Dict, List, Optional

import openai

logger = logging.getLogger(__name__)


class LLMService:
    """Thin async wrapper around the OpenAI clients"""

    def __init__(
        self,
        openai_api_key: str,
        generation_model: str = "gpt-4o-mini",
        chat_model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        embedding_dimension: int = 1024,
        llm_api_key: Optional[str] = None,
        llm_base_url: Optional[str] = None,
        embedding_client: Optional[openai.AsyncOpenAI] = None,
        generation_client: Optional[openai.AsyncOpenAI] = None,
    ):
        self.embedding_client = embedding_client or openai.AsyncOpenAI(api_key=openai_api_key)
        if generation_client is not None:
            self.generation_client = generation_client
        elif llm_base_url:
            self.generation_client = openai.AsyncOpenAI(
                api_key=llm_api_key or openai_api_key, base_url=llm_base_url
            )
        else:
            self.generation_client = self.embedding_client

        self.generation_model = generation_model
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.embedding_dimension = embedding_dimension

    async def generate_text(self, prompt: str, model: Optional[str] = None) -> str:
        """Single-turn completion at temperature 0"""
        response = await self.generation_client.chat.completions.create(
            model=model or self.generation_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
        )
        return response.choices[0].message.content or ""

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed texts; output order matches input order"""
        if not texts:
            return []
        response = await self.embedding_client.embeddings.create(
            model=self.embedding_model,
            input=texts,
            dimensions=self.embedding_dimension,
        )
        return [item.embedding for item in response.data]

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        json_mode: bool = False,
        model: Optional[str] = None,
    ):
        """
        Multi-turn chat completion.

        Returns:
            The first choice's message, including any tool calls
        """
        kwargs: Dict[str, Any] = {
            "model": model or self.chat_model,
            "messages": messages,
            "temperature": 0.3,
        }
        if tools:
            kwargs["tools"] = tools
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.generation_client.chat.completions.create(**kwargs)
        message = response.choices[0].message
        logger.debug(f"Chat completion returned {len(message.tool_calls or [])} tool call(s)")
        return message
