"""
Runtime configuration read from environment variables.

Every knob has a default so the service boots with no environment at all;
in that mode the LLM is disabled (no API key) and the in-memory stores are
built from the bundled catalog.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent.parent / "data" / "tools.json"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """Process-wide settings snapshot."""

    log_level: str = "INFO"
    log_json: bool = True

    llm_api_base: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 5.0
    llm_cost_per_1k_tokens: float = 0.0
    enable_llm_planning: bool = True

    embedding_model_name: str = "all-MiniLM-L6-v2"
    embedding_cache_enabled: bool = True
    embedding_cache_ttl_seconds: float = 3600.0
    embedding_cache_max_size: int = 1000
    embedding_cache_cleanup_interval_seconds: float = 300.0

    catalog_path: str = str(DEFAULT_CATALOG_PATH)
    catalog_refresh_seconds: float = 300.0

    qdrant_url: Optional[str] = None
    qdrant_api_key: Optional[str] = None

    search_timeout_seconds: float = 8.0
    max_refinement_cycles: int = 2
    reranker_model: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
            llm_api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
            llm_api_key=os.getenv("LLM_API_KEY") or None,
            llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 5.0),
            llm_cost_per_1k_tokens=_env_float("LLM_COST_PER_1K_TOKENS", 0.0),
            enable_llm_planning=_env_bool("ENABLE_LLM_PLANNING", True),
            embedding_model_name=os.getenv("EMBEDDING_MODEL_NAME", "all-MiniLM-L6-v2"),
            embedding_cache_enabled=_env_bool("EMBEDDING_CACHE_ENABLED", True),
            embedding_cache_ttl_seconds=_env_float("EMBEDDING_CACHE_TTL_SECONDS", 3600.0),
            embedding_cache_max_size=_env_int("EMBEDDING_CACHE_MAX_SIZE", 1000),
            embedding_cache_cleanup_interval_seconds=_env_float(
                "EMBEDDING_CACHE_CLEANUP_INTERVAL_SECONDS", 300.0
            ),
            catalog_path=os.getenv("CATALOG_PATH", str(DEFAULT_CATALOG_PATH)),
            catalog_refresh_seconds=_env_float("CATALOG_REFRESH_SECONDS", 300.0),
            qdrant_url=os.getenv("QDRANT_URL") or None,
            qdrant_api_key=os.getenv("QDRANT_API_KEY") or None,
            search_timeout_seconds=_env_float("SEARCH_TIMEOUT_SECONDS", 8.0),
            max_refinement_cycles=max(0, min(5, _env_int("MAX_REFINEMENT_CYCLES", 2))),
            reranker_model=os.getenv("RERANKER_MODEL") or None,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor (read once per process)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached snapshot so the next call re-reads the environment."""
    global _settings
    _settings = None
