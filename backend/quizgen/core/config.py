"""
Centralized application configuration.

Uses pydantic BaseSettings for automatic env-var loading and validation.
Import the singleton ``settings`` instance throughout the app.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

# Resolve project root once; relative paths resolve from here
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


class Settings(BaseSettings):
    """Application settings, validated from environment variables."""

    # ── Environment ────────────────────────────────────────
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False

    # ── Logging ───────────────────────────────────────────
    LOG_DIR: str = "./logs"
    LOG_LEVEL: str = "INFO"
    LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: int = 3

    # ── LLM ───────────────────────────────────────────────
    LLM_PROVIDER: str = "GOOGLE"  # GOOGLE (Gemini) or OLLAMA
    GOOGLE_MODEL: str = "models/gemini-2.5-flash"
    GOOGLE_API_KEY: str = ""
    OLLAMA_MODEL: str = "llama3"

    # ── LLM Generation Control ───────────────────────────
    LLM_TEMPERATURE_STRUCTURED: float = 0.7
    LLM_TOP_P_STRUCTURED: float = 0.8
    LLM_TOP_K: int = 40
    LLM_MAX_TOKENS: int = 8192
    LLM_SAFETY_THRESHOLD: Literal[
        "BLOCK_NONE", "BLOCK_ONLY_HIGH", "BLOCK_MEDIUM_AND_ABOVE", "BLOCK_LOW_AND_ABOVE"
    ] = "BLOCK_MEDIUM_AND_ABOVE"

    # ── AI client policy ──────────────────────────────────
    AI_TIMEOUT: float = 60.0           # seconds per attempt
    AI_MAX_RETRIES: int = 3            # total attempts
    AI_RETRY_BASE_DELAY: float = 2.0   # seconds, doubled per attempt
    AI_RATE_LIMIT_PER_MINUTE: int = 60
    AI_MAX_PROMPT_LENGTH: int = 30000

    # ── Generation limits ─────────────────────────────────
    MIN_CONTENT_LENGTH: int = 10
    MAX_CONTENT_LENGTH: int = 15000
    MAX_QUESTIONS: int = 50
    DEFAULT_QUESTION_COUNT: int = 5
    MC_OPTION_COUNT: int = 4
    SUPPORTED_FILE_TYPES: List[str] = ["pdf", "doc", "docx", "txt", "md"]
    MAX_UPLOAD_SIZE_MB: int = 10

    # ── Quotas ────────────────────────────────────────────
    ROLE_DAILY_QUOTAS: Dict[str, int] = {
        "admin": 200,
        "school_admin": 100,
        "teacher": 50,
        "student": 10,
    }
    DEFAULT_ROLE: str = "student"

    # ── Cache TTLs (seconds) ──────────────────────────────
    PROMPT_CACHE_TTL: int = 1800
    PERMISSION_CACHE_TTL: int = 300
    QUOTA_USAGE_CACHE_TTL: int = 3600
    QUOTA_INFO_CACHE_TTL: int = 300

    # ── Estimation rates (USD per token) ──────────────────
    INPUT_COST_PER_TOKEN: float = 0.00001
    OUTPUT_COST_PER_TOKEN: float = 0.00003

    @field_validator("LLM_PROVIDER", mode="after")
    @classmethod
    def _uppercase_provider(cls, v: str) -> str:
        v = v.upper()
        valid = {"GOOGLE", "OLLAMA"}
        if v not in valid:
            raise ValueError(f"LLM_PROVIDER must be one of {valid}, got {v!r}")
        return v

    @field_validator("SUPPORTED_FILE_TYPES", mode="before")
    @classmethod
    def _parse_file_types(cls, v):
        if isinstance(v, str):
            return [e.strip().lower().lstrip(".") for e in v.split(",") if e.strip()]
        return v

    @field_validator("ROLE_DAILY_QUOTAS", mode="before")
    @classmethod
    def _parse_quotas(cls, v):
        # Accepts "admin:200,teacher:50" from the environment
        if isinstance(v, str):
            quotas = {}
            for pair in v.split(","):
                if not pair.strip():
                    continue
                role, _, limit = pair.partition(":")
                quotas[role.strip()] = int(limit)
            return quotas
        return v

    @model_validator(mode="after")
    def _resolve_paths_and_cross_validate(self):
        """Resolve relative paths to absolute & cross-validate provider keys."""
        if self.LOG_DIR and not os.path.isabs(self.LOG_DIR):
            object.__setattr__(self, "LOG_DIR", os.path.join(_PROJECT_ROOT, self.LOG_DIR))

        if self.DEFAULT_ROLE not in self.ROLE_DAILY_QUOTAS:
            raise ValueError(
                f"DEFAULT_ROLE {self.DEFAULT_ROLE!r} has no entry in ROLE_DAILY_QUOTAS"
            )

        import logging
        _log = logging.getLogger("config")
        if self.LLM_PROVIDER == "GOOGLE" and not self.GOOGLE_API_KEY:
            _log.warning("LLM_PROVIDER is GOOGLE but GOOGLE_API_KEY is empty")

        return self

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
