"""
Theme classification against a controlled vocabulary.

Results are cached on disk by content hash so re-ingesting the same text
does not hit the model again.
"""

import asyncio
import json
import logging
import os
import time
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from utils.config import ThemeConfig
from utils.errors import ParseError
from utils.helpers import clean_json_response, content_hash

logger = logging.getLogger(__name__)

THEME_PROMPT = """Analyze the following text and identify which of these themes are present [respond with a JSON object containing 'themes' array and 'confidence' object with scores between 0-1]:

Themes: {themes}

Text: "{text}"

Expected format:
{{
    "themes": ["theme1", "theme2"],
    "confidence": {{
        "theme1": 0.8,
        "theme2": 0.7
    }}
}}"""


class ThemeClassification(BaseModel):
    themes: List[str] = Field(default_factory=list)
    confidence: Dict[str, float] = Field(default_factory=dict)


class ThemeCache:
    """JSON file of content hash -> classification, with a time-to-live"""

    def __init__(self, path: Optional[str], ttl_days: int = 30):
        self.path = path
        self.ttl_seconds = ttl_days * 24 * 60 * 60
        self.entries: Dict[str, Dict] = {}
        self._load()

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self.entries = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error reading theme cache file, starting with empty cache: {e}")
            self.entries = {}

    def _save(self):
        if not self.path:
            return
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.entries, f, indent=2)
        except OSError as e:
            logger.error(f"Error saving theme cache: {e}")

    def get(self, text: str) -> Optional[ThemeClassification]:
        key = content_hash(text)
        cached = self.entries.get(key)
        if cached is None:
            return None
        if time.time() - cached["timestamp"] > self.ttl_seconds:
            del self.entries[key]
            self._save()
            return None
        return ThemeClassification.model_validate(cached["result"])

    def put(self, text: str, result: ThemeClassification):
        self.entries[content_hash(text)] = {"timestamp": time.time(), "result": result.model_dump()}
        self._save()


class ThemeClassifier:
    """Classifies text into the configured themes using the language model"""

    def __init__(self, llm_service, config: Optional[ThemeConfig] = None, model: Optional[str] = None):
        self.llm_service = llm_service
        self.config = config or ThemeConfig()
        self.model = model
        self.cache = ThemeCache(self.config.cache_path, self.config.cache_ttl_days)

    def _parse(self, response: str) -> ThemeClassification:
        try:
            data = json.loads(clean_json_response(response))
            confidence = {str(k): float(v) for k, v in (data.get("confidence") or {}).items()}
            themes = [str(t) for t in data.get("themes") or []]
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed theme classification output: {e}") from e

        vocabulary = set(self.config.themes)
        kept = [
            theme for theme in dict.fromkeys(themes)
            if theme in vocabulary and confidence.get(theme, 0.0) >= self.config.min_confidence
        ]
        return ThemeClassification(themes=kept, confidence=confidence)

    async def classify_themes(self, text: str) -> ThemeClassification:
        cached = self.cache.get(text)
        if cached is not None:
            return cached

        prompt = THEME_PROMPT.format(themes=", ".join(self.config.themes), text=text.replace('"', '\\"'))
        response = await self.llm_service.generate_text(prompt, model=self.model)
        result = self._parse(response)

        self.cache.put(text, result)
        logger.debug(f"Classified text into themes {result.themes}")
        return result

    async def batch_classify_themes(self, texts: List[str]) -> List[ThemeClassification]:
        """Classify in waves of ``batch_size`` concurrent requests, keeping input order"""
        results: List[ThemeClassification] = []
        batch_size = self.config.batch_size
        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            results.extend(await asyncio.gather(*(self.classify_themes(text) for text in batch)))
        return results
