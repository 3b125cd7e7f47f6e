from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path

from pydantic import BaseModel, Field


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip()


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _default_database_path() -> Path:
    override = _env("SOLSNIFF_DATABASE_PATH")
    if override:
        return Path(override).expanduser()
    return Path(__file__).parent / "data" / "solsniff.db"


DEFAULT_MODELS: dict[str, str] = {
    "groq": "llama-3.3-70b-versatile",
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-haiku-20240307",
}


class Settings(BaseModel):
    # LLM
    llm_provider: str = Field(default_factory=lambda: _env("LLM_PROVIDER", "groq").lower())
    llm_model: str = Field(default_factory=lambda: _env("LLM_MODEL"))
    groq_api_key: str = Field(default_factory=lambda: _env("GROQ_API_KEY"))
    openai_api_key: str = Field(default_factory=lambda: _env("OPENAI_API_KEY"))
    openai_base_url: str = Field(default_factory=lambda: _env("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    anthropic_api_key: str = Field(default_factory=lambda: _env("ANTHROPIC_API_KEY"))
    llm_temperature: float = 0.7
    llm_max_tokens: int = 4096
    llm_timeout_seconds: float = 120.0
    rate_limit_delay_seconds: float = 5.0
    max_rate_limit_retries: int = 5

    # Data sources
    helius_api_key: str = Field(default_factory=lambda: _env("HELIUS_API_KEY"))
    github_token: str = Field(default_factory=lambda: _env("GITHUB_TOKEN"))
    lunarcrush_api_key: str = Field(default_factory=lambda: _env("LUNARCRUSH_API_KEY"))
    user_agent: str = "SolSniff/1.0"
    request_timeout_seconds: float = 15.0

    # Agents
    signal_digest_limit: int = 40
    idea_delay_seconds: float = 2.0

    # Service
    database_path: Path = Field(default_factory=_default_database_path)
    run_on_startup: bool = Field(default_factory=lambda: _env_bool("SOLSNIFF_RUN_ON_STARTUP", True))
    api_host: str = Field(default_factory=lambda: _env("API_HOST", "127.0.0.1"))
    api_port: int = Field(default_factory=lambda: int(_env("API_PORT", "4000")))
    cors_origin: str = Field(default_factory=lambda: _env("CORS_ORIGIN", "http://localhost:3000"))

    def model_for(self, provider: str) -> str:
        """Explicit ``LLM_MODEL`` wins, otherwise the provider's default model."""
        return self.llm_model or DEFAULT_MODELS.get(provider, "")

    def api_key_for(self, provider: str) -> str:
        return {
            "groq": self.groq_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }.get(provider, "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
