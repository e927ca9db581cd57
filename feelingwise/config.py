"""
FeelingWise Configuration

Central settings loaded from environment variables.
"""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    # --- Versioning ---
    VERSION: str = "1.0.0"

    # --- LLM Provider ---
    LLM_PROVIDER: str = os.getenv("FEELINGWISE_LLM_PROVIDER", "ollama")
    OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://127.0.0.1:11434")
    OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "phi3:mini")
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("FEELINGWISE_LLM_TIMEOUT", "30"))
    LLM_TEMPERATURE: float = float(os.getenv("FEELINGWISE_LLM_TEMPERATURE", "0.3"))

    # --- Batch Scheduler ---
    BATCH_SIZE: int = int(os.getenv("FEELINGWISE_BATCH_SIZE", "3"))
    BATCH_DELAY_MS: int = int(os.getenv("FEELINGWISE_BATCH_DELAY_MS", "500"))
    MAX_TRACKED_HANDLES: int = int(
        os.getenv("FEELINGWISE_MAX_TRACKED_HANDLES", "10000")
    )
    MIN_FRAGMENT_CHARS: int = 10
    MAX_FRAGMENT_CHARS: int = 5000

    # --- Result Cache ---
    CACHE_TTL_SECONDS: int = int(os.getenv("FEELINGWISE_CACHE_TTL", str(24 * 3600)))
    CACHE_MAX_ENTRIES: int = int(os.getenv("FEELINGWISE_CACHE_MAX_ENTRIES", "1000"))
    # Local-fallback results live this long so a recovered service is retried
    FALLBACK_CACHE_TTL_SECONDS: int = int(os.getenv("FEELINGWISE_FALLBACK_CACHE_TTL", "300"))
    # Empty = in-memory only. Set a path to keep results across restarts.
    CACHE_DB_PATH: str = os.getenv("FEELINGWISE_CACHE_DB", "")

    # --- Host-facing toggles (initial values, mutable at runtime via the scheduler) ---
    ENABLED: bool = _env_bool("FEELINGWISE_ENABLED", "true")
    AUTO_NEUTRALIZE: bool = _env_bool("FEELINGWISE_AUTO_NEUTRALIZE", "true")

    # --- Bridge server ---
    HOST: str = os.getenv("FEELINGWISE_HOST", "127.0.0.1")
    PORT: int = int(os.getenv("FEELINGWISE_PORT", "19542"))

    # --- CORS ---
    CORS_ORIGINS: str = os.getenv("FEELINGWISE_CORS_ORIGINS", "*")


settings = Settings()
