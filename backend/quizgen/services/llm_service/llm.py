"""LLM provider factory with generation control and safety settings.

Usage:
    from quizgen.services.llm_service.llm import get_llm_structured

    llm = get_llm_structured()
    response = await llm.ainvoke("Hello")

Timeouts and retries are NOT configured here; the AI client wraps every
call with its own timeout / retry policy, so providers are built with
``max_retries=0`` where they support it.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Dict, Optional

from langchain_google_genai import (
    ChatGoogleGenerativeAI,
    HarmBlockThreshold,
    HarmCategory,
)
from langchain_ollama import ChatOllama

from quizgen.core.config import settings

logger = logging.getLogger(__name__)

# Suppress warnings
warnings.simplefilter("ignore", UserWarning)

# ── Provider registry ─────────────────────────────────────────

_PROVIDERS: Dict[str, Any] = {}

# ── LLM instance cache (keyed on frozen kwargs) ───────────────
_llm_cache: Dict[tuple, Any] = {}
_LLM_CACHE_MAX = 16

_SAFETY_CATEGORIES = (
    HarmCategory.HARM_CATEGORY_HARASSMENT,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)


def _register_providers():
    """Build the provider map lazily (called once on first ``get_llm_structured``)."""
    if _PROVIDERS:
        return

    _PROVIDERS["OLLAMA"] = _build_ollama
    _PROVIDERS["GOOGLE"] = _build_google


def safety_settings(threshold: Optional[str] = None) -> Dict[Any, Any]:
    """Same block threshold for every harm category."""
    level = HarmBlockThreshold[threshold or settings.LLM_SAFETY_THRESHOLD]
    return {category: level for category in _SAFETY_CATEGORIES}


# ── Builder functions ─────────────────────────────────────────


def _common_kwargs(
    temperature: float,
    top_p: Optional[float] = None,
    **extra_kwargs
) -> dict:
    """Shared kwargs for all providers with explicit generation control."""
    kwargs = {"temperature": temperature}

    if top_p is not None:
        kwargs["top_p"] = top_p

    kwargs.update(extra_kwargs)
    return kwargs


def _build_ollama(
    temperature: float,
    top_p: float = None,
    max_tokens: int = None,
    **extra_kwargs
):
    """Build Ollama client with generation parameters."""
    kw = _common_kwargs(temperature, top_p, **extra_kwargs)
    kw["model"] = settings.OLLAMA_MODEL
    if max_tokens:
        kw["num_predict"] = max_tokens
    return ChatOllama(**kw)


def _build_google(
    temperature: float,
    top_p: float = None,
    max_tokens: int = None,
    **extra_kwargs
):
    """Build Google Gemini client with generation and safety parameters."""
    kw = _common_kwargs(temperature, top_p, **extra_kwargs)
    kw.update(
        model=settings.GOOGLE_MODEL,
        google_api_key=settings.GOOGLE_API_KEY,
        safety_settings=safety_settings(),
        max_retries=0,
    )
    if max_tokens:
        kw["max_output_tokens"] = max_tokens
    return ChatGoogleGenerativeAI(**kw)


# ── Public API ────────────────────────────────────────────────


def model_name(provider: Optional[str] = None) -> str:
    active_provider = provider or settings.LLM_PROVIDER
    if active_provider == "OLLAMA":
        return settings.OLLAMA_MODEL
    return settings.GOOGLE_MODEL


def get_llm_structured(
    temperature: Optional[float] = None,
    top_p: Optional[float] = None,
    max_tokens: Optional[int] = None,
    provider: Optional[str] = None,
    **kwargs
):
    """Return a LLM instance configured for quiz JSON output.

    Args:
        temperature: Generation temperature (default: LLM_TEMPERATURE_STRUCTURED)
        top_p: Nucleus sampling parameter (default: LLM_TOP_P_STRUCTURED)
        max_tokens: Max tokens to generate (default: LLM_MAX_TOKENS)
        provider: Ignore global config and use specific provider.
        **kwargs: Additional provider-specific parameters

    Returns:
        LangChain chat model instance
    """
    _register_providers()

    # Use structured defaults if not specified
    temp = temperature if temperature is not None else settings.LLM_TEMPERATURE_STRUCTURED
    p = top_p if top_p is not None else settings.LLM_TOP_P_STRUCTURED
    tokens = max_tokens if max_tokens is not None else settings.LLM_MAX_TOKENS

    active_provider = provider if provider else settings.LLM_PROVIDER
    if "top_k" not in kwargs:
        kwargs["top_k"] = settings.LLM_TOP_K

    builder = _PROVIDERS.get(active_provider)
    if builder is None:
        raise ValueError(f"Unknown LLM provider {active_provider!r}")

    # Cache key: freeze all build params to reuse instances
    cache_key = ("structured", active_provider, temp, p, tokens, tuple(sorted(kwargs.items())))
    cached = _llm_cache.get(cache_key)
    if cached is not None:
        return cached

    logger.info("Building %s LLM (model=%s, temperature=%s)", active_provider, model_name(active_provider), temp)
    instance = builder(temperature=temp, top_p=p, max_tokens=tokens, **kwargs)
    if len(_llm_cache) >= _LLM_CACHE_MAX:
        _llm_cache.pop(next(iter(_llm_cache)))
    _llm_cache[cache_key] = instance
    return instance
