"""
Overlay Plans — Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module reads configuration through the `settings` singleton.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Audio — OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""

    # SQLite
    DATABASE_PATH: str = "data/timeslots.db"

    # Security — empty list means the bot is open to everyone
    ALLOWED_USER_IDS: list[int] = []

    # Mini app linked from project views (optional)
    WEBAPP_URL: str = ""

    # Real-time channel
    REALTIME_HOST: str = "0.0.0.0"
    REALTIME_PORT: int = 3000

    # Intent reconciliation
    RECONCILE_CONFIDENCE_THRESHOLD: float = 0.7

    DEFAULT_LANGUAGE: str = "en"

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("RECONCILE_CONFIDENCE_THRESHOLD")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("RECONCILE_CONFIDENCE_THRESHOLD must be between 0 and 1")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/timeslots.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        WEBAPP_URL=os.getenv("WEBAPP_URL", "").rstrip("/"),
        REALTIME_HOST=os.getenv("REALTIME_HOST", "0.0.0.0"),
        REALTIME_PORT=int(os.getenv("REALTIME_PORT", "3000")),
        RECONCILE_CONFIDENCE_THRESHOLD=float(
            os.getenv("RECONCILE_CONFIDENCE_THRESHOLD", "0.7")
        ),
        DEFAULT_LANGUAGE=os.getenv("DEFAULT_LANGUAGE", "en"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
