"""Configuration management via environment variables and .env file."""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("gemini", "openai", "anthropic")


class Config(BaseModel):
    """Application configuration loaded from environment."""

    # API keys (any subset may be present; missing ones are skipped at call time)
    google_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # Provider routing
    primary_provider: str = "gemini"
    fallback_enabled: bool = True

    # Models
    gemini_model: str = "gemini-2.5-flash"
    openai_model: str = "gpt-4o"
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_max_tokens: int = 8000
    anthropic_max_searches: int = 10

    # Timeouts (seconds) per provider attempt
    provider_timeout_s: float = 120
    escalation_timeout_s: float = 180

    # Escalation policy
    min_competitors: int = 5
    coverage_threshold: int = 8  # out of 12 checklist points

    # Cache
    cache_ttl_days: int = 7
    cache_db_path: str = ".research_cache.db"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> Config:
    """Load configuration from .env file and environment variables.

    Environment variables override .env values.
    Exits with an error message if no provider key is configured at all.
    """
    load_dotenv()

    google_key = os.getenv("GOOGLE_API_KEY", "")
    openai_key = os.getenv("OPENAI_API_KEY", "")
    anthropic_key = os.getenv("ANTHROPIC_API_KEY", "")

    if not (google_key or openai_key or anthropic_key):
        print("Configuration error:", file=sys.stderr)
        print(
            "  - At least one provider key required: GOOGLE_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY",
            file=sys.stderr,
        )
        print("\nSet these in a .env file or as environment variables.", file=sys.stderr)
        sys.exit(1)

    primary = os.getenv("RESEARCH_PRIMARY_PROVIDER", "gemini").strip().lower()
    if primary not in PROVIDER_NAMES:
        logger.warning("Unknown RESEARCH_PRIMARY_PROVIDER %r — using gemini", primary)
        primary = "gemini"

    return Config(
        google_api_key=google_key,
        openai_api_key=openai_key,
        anthropic_api_key=anthropic_key,
        primary_provider=primary,
        fallback_enabled=_env_bool("RESEARCH_FALLBACK_ENABLED", True),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
        anthropic_max_tokens=int(os.getenv("ANTHROPIC_MAX_TOKENS", "8000")),
        anthropic_max_searches=int(os.getenv("ANTHROPIC_MAX_SEARCHES", "10")),
        provider_timeout_s=float(os.getenv("PROVIDER_TIMEOUT", "120")),
        escalation_timeout_s=float(os.getenv("ESCALATION_TIMEOUT", "180")),
        min_competitors=int(os.getenv("MIN_COMPETITORS", "5")),
        coverage_threshold=int(os.getenv("COVERAGE_THRESHOLD", "8")),
        cache_ttl_days=int(os.getenv("CACHE_TTL_DAYS", "7")),
        cache_db_path=os.getenv("CACHE_DB_PATH", ".research_cache.db"),
    )
