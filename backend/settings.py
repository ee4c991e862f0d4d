"""Centralized configuration: every tunable in one place.

Environment variables override defaults. Import anywhere:

    from settings import settings

All values are frozen at startup. To change, update .env and restart.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level above backend/)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")


# ── Helpers ───────────────────────────────────────────────────────────────

def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int = 0) -> int:
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: float = 0.0) -> float:
    return float(os.getenv(key, str(default)))


def _env_bool(key: str, default: bool = False) -> bool:
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes")


# ── Settings ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    """Application settings.  Immutable after creation."""

    # ── LLM Provider ──────────────────────────────────────────────
    # Supported: gemini, openai
    LLM_PROVIDER: str = _env("LLM_PROVIDER", "gemini")
    # Ordered, comma-separated.  The pool rotates through them on failure.
    LLM_API_KEYS: str = _env("LLM_API_KEYS", _env("GEMINI_API_KEY"))
    # Fallback when LLM_API_KEYS is empty: one key per line.
    LLM_API_KEY_FILE: str = _env("LLM_API_KEY_FILE", str(_project_root / "apikey.txt"))
    LLM_MODEL: str = _env("LLM_MODEL")
    # Empty LLM_MODEL → each provider picks its own default.
    LLM_BASE_URL: str = _env("LLM_BASE_URL")
    # Optional: OpenAI-compatible endpoint override (vLLM, Ollama, etc.)

    # ── Generation parameters ─────────────────────────────────────
    CHAT_TEMPERATURE: float = _env_float("CHAT_TEMPERATURE", 0.9)
    CHAT_TOP_K: int = _env_int("CHAT_TOP_K", 1)
    CHAT_TOP_P: float = _env_float("CHAT_TOP_P", 1.0)
    VISION_TEMPERATURE: float = _env_float("VISION_TEMPERATURE", 0.7)
    VISION_TOP_K: int = _env_int("VISION_TOP_K", 32)
    VISION_TOP_P: float = _env_float("VISION_TOP_P", 1.0)
    MAX_OUTPUT_TOKENS: int = _env_int("MAX_OUTPUT_TOKENS", 2048)

    # ── Failover ──────────────────────────────────────────────────
    # Seconds to wait after a failed attempt before trying the next key.
    RETRY_BACKOFF: float = _env_float("RETRY_BACKOFF", 1.0)

    # ── Response cache ────────────────────────────────────────────
    CACHE_MAX_SIZE: int = _env_int("CACHE_MAX_SIZE", 100)
    CACHE_TTL: int = _env_int("CACHE_TTL", 3600)
    CACHE_SWEEP_INTERVAL: int = _env_int("CACHE_SWEEP_INTERVAL", 300)

    # ── Chunk delivery ────────────────────────────────────────────
    # Replay emulates typing when a cached answer is served.
    REPLAY_CHUNK_SIZE: int = _env_int("REPLAY_CHUNK_SIZE", 50)
    REPLAY_CHUNK_DELAY: float = _env_float("REPLAY_CHUNK_DELAY", 0.05)
    # Live chunks are paced by the upstream; 0 adds nothing on top.
    LIVE_CHUNK_DELAY: float = _env_float("LIVE_CHUNK_DELAY", 0.0)

    # ── Context windows ───────────────────────────────────────────
    # Messages sent to the provider as conversation context.
    HISTORY_WINDOW: int = _env_int("HISTORY_WINDOW", 20)
    # Messages hashed into the response-cache fingerprint.
    FINGERPRINT_WINDOW: int = _env_int("FINGERPRINT_WINDOW", 3)

    # ── Web search (Google Custom Search) ─────────────────────────
    SEARCH_API_KEY: str = _env("SEARCH_API_KEY")
    SEARCH_ENGINE_ID: str = _env("SEARCH_ENGINE_ID")
    SEARCH_ENDPOINT: str = _env("SEARCH_ENDPOINT", "https://www.googleapis.com/customsearch/v1")
    SEARCH_MAX_RESULTS: int = _env_int("SEARCH_MAX_RESULTS", 3)
    SEARCH_TIMEOUT: float = _env_float("SEARCH_TIMEOUT", 10.0)

    # ── Sessions ──────────────────────────────────────────────────
    HEARTBEAT_INTERVAL: int = _env_int("HEARTBEAT_INTERVAL", 30)

    # ── Database (PostgreSQL) ─────────────────────────────────────
    DATABASE_URL: str = _env("DATABASE_URL")
    POSTGRES_HOST: str = _env("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = _env_int("POSTGRES_PORT", 55432)
    POSTGRES_DB: str = _env("POSTGRES_DB", "chatapp")
    POSTGRES_USER: str = _env("POSTGRES_USER", "root")
    POSTGRES_PASSWORD: str = _env("POSTGRES_PASSWORD", "password")
    DB_POOL_MIN: int = _env_int("DB_POOL_MIN", 1)
    DB_POOL_MAX: int = _env_int("DB_POOL_MAX", 10)
    # Skip the Postgres probe at startup and keep conversations in memory.
    USE_MEMORY_STORE: bool = _env_bool("USE_MEMORY_STORE", False)

    # ── Security ────────────────────────────────────────────────
    # Comma-separated origins allowed by CORS middleware.
    ALLOWED_ORIGINS: str = _env("ALLOWED_ORIGINS", "*")
    # Static token → user map: "tok1:alice,tok2:bob".
    AUTH_TOKENS: str = _env("AUTH_TOKENS")
    # When True, sockets without a valid token act as DEFAULT_USER_ID.
    ALLOW_ANONYMOUS: bool = _env_bool("ALLOW_ANONYMOUS", False)
    DEFAULT_USER_ID: str = _env("DEFAULT_USER_ID", "public")
    # Empty → admin endpoints are disabled.
    ADMIN_TOKEN: str = _env("ADMIN_TOKEN")

    # ── Server ────────────────────────────────────────────────────
    HOST: str = _env("HOST", "0.0.0.0")
    PORT: int = _env_int("PORT", 8000)
    DEBUG_MODE: bool = _env_bool("DEBUG_MODE", False)

    # ── Telemetry ─────────────────────────────────────────────────
    TELEMETRY_MAX_RECORDS: int = _env_int("TELEMETRY_MAX_RECORDS", 10_000)


settings = Settings()
