"""
Unit tests for backend/quizgen/services/llm_service/llm.py
Tests: provider dispatch, instance caching, generation parameters passed to
the provider builders, Gemini safety settings
Provider classes are replaced with recorders; no network required.
"""

import sys
import os
import pytest

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend"))
sys.path.insert(0, BACKEND_DIR)

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")

from langchain_google_genai import HarmBlockThreshold, HarmCategory

from quizgen.core.config import settings
from quizgen.services.llm_service import llm


class Recorder:
    """Stands in for a LangChain chat model class; keeps constructor kwargs."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs


@pytest.fixture
def recorders(monkeypatch):
    monkeypatch.setattr(llm, "_llm_cache", {})
    monkeypatch.setattr(llm, "ChatGoogleGenerativeAI", Recorder)
    monkeypatch.setattr(llm, "ChatOllama", Recorder)


class TestSafetySettings:

    def test_all_categories_same_threshold(self):
        safety = llm.safety_settings("BLOCK_ONLY_HIGH")
        assert len(safety) == 4
        assert set(safety.values()) == {HarmBlockThreshold.BLOCK_ONLY_HIGH}
        assert HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT in safety

    def test_default_threshold_from_settings(self):
        expected = HarmBlockThreshold[settings.LLM_SAFETY_THRESHOLD]
        assert set(llm.safety_settings().values()) == {expected}


class TestGetLlmStructured:

    def test_google_builder_kwargs(self, recorders):
        instance = llm.get_llm_structured(provider="GOOGLE")
        kw = instance.kwargs
        assert kw["model"] == settings.GOOGLE_MODEL
        assert kw["temperature"] == settings.LLM_TEMPERATURE_STRUCTURED
        assert kw["top_p"] == settings.LLM_TOP_P_STRUCTURED
        assert kw["top_k"] == settings.LLM_TOP_K
        assert kw["max_output_tokens"] == settings.LLM_MAX_TOKENS
        assert kw["max_retries"] == 0
        assert len(kw["safety_settings"]) == 4

    def test_ollama_builder_kwargs(self, recorders):
        instance = llm.get_llm_structured(provider="OLLAMA", temperature=0.2, max_tokens=512)
        kw = instance.kwargs
        assert kw["model"] == settings.OLLAMA_MODEL
        assert kw["temperature"] == 0.2
        assert kw["num_predict"] == 512
        assert "safety_settings" not in kw

    def test_instances_cached_per_params(self, recorders):
        first = llm.get_llm_structured(provider="GOOGLE")
        assert llm.get_llm_structured(provider="GOOGLE") is first
        assert llm.get_llm_structured(provider="GOOGLE", temperature=0.1) is not first

    def test_unknown_provider(self, recorders):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            llm.get_llm_structured(provider="NVIDIA")


class TestModelName:

    def test_per_provider(self):
        assert llm.model_name("OLLAMA") == settings.OLLAMA_MODEL
        assert llm.model_name("GOOGLE") == settings.GOOGLE_MODEL


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
