"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Assessment Validator"
    debug: bool = True
    mock_mode: bool = True  # When True, runs and requirements live in memory

    # ── LLM ──────────────────────────────────────────────
    google_api_key: str = ""
    llm_model: str = "gemini-2.5-flash"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 8192
    llm_timeout_seconds: float = 45.0

    # ── Rate limiting (shared by every run in the process) ──
    api_tier: str = "free"  # "free" | "paid"
    rate_limit_free_delay: float = 4.0
    rate_limit_paid_delay: float = 0.1

    # ── Retry / backoff ──────────────────────────────────
    retry_max_attempts: int = 4
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.25

    # ── Prompts ──────────────────────────────────────────
    prompt_version: str = "v1"
    generate_smart_questions: bool = True

    # ── MongoDB ──────────────────────────────────────────
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "assessment_validator"
    mongodb_use_transactions: bool = False

    # ── Pipeline Limits ──────────────────────────────────
    max_requirements_per_run: int = 500
    reasoning_excerpt_chars: int = 500

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
