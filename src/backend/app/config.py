"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Engine settings loaded from environment / .env file."""

    # App
    app_name: str = "MedCrowd Consultation Engine"
    debug: bool = False

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Storage
    store_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = ""
    idempotency_ttl_seconds: int = 600
    event_ttl_seconds: int = 300

    # Agent platform
    agent_api_base_url: str = ""
    agent_client_id: str = ""
    agent_client_secret: str = ""
    demo_mode: bool = False

    # Consultation engine
    max_agents_per_consultation: int = 5
    agent_timeout_seconds: float = 30.0
    reaction_timeout_seconds: float = 30.0
    reaction_round_enabled: bool = False
    token_refresh_grace_seconds: int = 60
    refresh_lock_ttl_seconds: int = 10
    refresh_lock_wait_seconds: float = 1.0
    circuit_breaker_minutes: int = 30

    # Text heuristics
    duplicate_threshold: float = 0.7
    consensus_threshold: float = 0.35
    cost_sanity_ceiling: int = 100_000

    # Generative summarizer (OpenAI-compatible endpoint)
    summarizer_enabled: bool = False
    summarizer_base_url: str = ""
    summarizer_api_key: str = ""
    summarizer_model_id: str = "gpt-4o-mini"
    summarizer_timeout_seconds: float = 20.0
    summarizer_max_tokens: int = 2048
    llm_max_retries: int = 3

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
