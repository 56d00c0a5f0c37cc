"""
Tests for theme classification and its on-disk cache.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest

from services.theme_classifier import ThemeCache, ThemeClassification, ThemeClassifier
from utils.config import ThemeConfig
from utils.errors import ParseError


def classifier_with(response, tmp_path=None, **config):
    llm = AsyncMock()
    llm.generate_text.return_value = response
    if tmp_path is not None:
        config.setdefault("cache_path", str(tmp_path / "themes.json"))
    return ThemeClassifier(llm, ThemeConfig(**config))


class TestParsing:

    @pytest.mark.asyncio
    async def test_filters_vocabulary_and_confidence(self):
        response = json.dumps({
            "themes": ["happiness", "astrology", "leadership"],
            "confidence": {"happiness": 0.9, "astrology": 0.95, "leadership": 0.4},
        })
        classifier = classifier_with(response)

        result = await classifier.classify_themes("Happiness is a skill.")

        assert result.themes == ["happiness"]
        assert result.confidence["leadership"] == 0.4

    @pytest.mark.asyncio
    async def test_accepts_fenced_json(self):
        response = '```json\n{"themes": ["philosophy"], "confidence": {"philosophy": 0.8}}\n```'
        classifier = classifier_with(response)

        result = await classifier.classify_themes("Read what you love.")
        assert result.themes == ["philosophy"]

    @pytest.mark.asyncio
    async def test_malformed_output_raises_parse_error(self):
        classifier = classifier_with("I think it is about happiness")

        with pytest.raises(ParseError):
            await classifier.classify_themes("text")

    @pytest.mark.asyncio
    async def test_prompt_lists_vocabulary(self):
        classifier = classifier_with('{"themes": [], "confidence": {}}', themes=["alpha", "beta"])

        await classifier.classify_themes("text")

        prompt = classifier.llm_service.generate_text.await_args.args[0]
        assert "alpha, beta" in prompt


class TestCache:

    @pytest.mark.asyncio
    async def test_repeat_text_hits_cache(self, tmp_path):
        classifier = classifier_with('{"themes": ["happiness"], "confidence": {"happiness": 0.9}}', tmp_path)

        first = await classifier.classify_themes("same text")
        second = await classifier.classify_themes("same text")

        assert first == second
        assert classifier.llm_service.generate_text.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_survives_restart(self, tmp_path):
        response = '{"themes": ["happiness"], "confidence": {"happiness": 0.9}}'
        await classifier_with(response, tmp_path).classify_themes("same text")

        restarted = classifier_with(response, tmp_path)
        result = await restarted.classify_themes("same text")

        assert result.themes == ["happiness"]
        restarted.llm_service.generate_text.assert_not_awaited()

    def test_expired_entry_is_evicted(self, tmp_path):
        cache = ThemeCache(str(tmp_path / "themes.json"), ttl_days=1)
        cache.put("old text", ThemeClassification(themes=["happiness"]))
        key = next(iter(cache.entries))
        cache.entries[key]["timestamp"] = time.time() - 2 * 24 * 60 * 60

        assert cache.get("old text") is None
        assert cache.entries == {}

    def test_unreadable_cache_file_starts_empty(self, tmp_path):
        path = tmp_path / "themes.json"
        path.write_text("{not json")

        assert ThemeCache(str(path)).entries == {}


class TestBatch:

    @pytest.mark.asyncio
    async def test_batch_keeps_input_order(self):
        llm = AsyncMock()

        async def generate(prompt, model=None):
            theme = "happiness" if "joy" in prompt else "wealth-building"
            return json.dumps({"themes": [theme], "confidence": {theme: 0.9}})

        llm.generate_text.side_effect = generate
        classifier = ThemeClassifier(llm, ThemeConfig(batch_size=2))

        results = await classifier.batch_classify_themes(["joy", "money", "joy", "money", "joy"])

        assert [r.themes[0] for r in results] == [
            "happiness", "wealth-building", "happiness", "wealth-building", "happiness",
        ]
