"""LLM service module.

Language model abstraction layer for quiz generation (Google Gemini by
default, Ollama as a local alternative).

Key modules:
- llm.py: Provider factory and client creation
- ai_client.py: Rate-limited, timed, retried single-prompt calls
- response_parser.py: JSON extraction, repair and question validation
- llm_schemas.py: Pydantic schemas for structured outputs
"""
