"""
Centralized configuration for the Media Query Generator.

All configuration values are defined here. In production, sensitive values
come from the environment. Locally, they come from .env file.
"""
import logging
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=True, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # ==========================================================================
    # API KEYS
    # ==========================================================================
    openai_api_key: str = Field(default="", alias="OPENAI_KEY")

    # ==========================================================================
    # DATABASE
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///./data/query_generation.db",
        alias="DATABASE_URL"
    )

    # ==========================================================================
    # AI ENHANCEMENT
    # ==========================================================================
    ai_enabled: bool = Field(default=True, alias="AI_ENABLED")
    query_model: str = Field(default="gpt-4o-mini", alias="QUERY_MODEL")
    ai_temperature: float = Field(default=0.7, alias="AI_TEMPERATURE")
    ai_max_tokens: int = Field(default=1000, alias="AI_MAX_TOKENS")
    ai_timeout: float = Field(default=30.0, alias="AI_TIMEOUT")  # seconds per provider call

    # ==========================================================================
    # MODEL PRICING (per 1M tokens)
    # ==========================================================================
    @property
    def model_config_map(self) -> dict:
        """Model-specific configuration including pricing."""
        return {
            "gpt-4o-mini": {
                "api": "chat",
                "pricing": {"input": 0.15, "output": 0.60},
            },
            "gpt-4o": {
                "api": "chat",
                "pricing": {"input": 2.50, "output": 10.0},
            },
            "gpt-5-mini": {
                "api": "chat",
                "pricing": {"input": 0.15, "output": 0.60},
            },
        }

    def get_model_config(self, model: str) -> dict:
        """Get configuration for a specific model."""
        return self.model_config_map.get(model, self.model_config_map["gpt-4o-mini"])

    # ==========================================================================
    # TEMPLATE ENGINE
    # ==========================================================================
    template_cache_ttl: float = Field(default=3600.0, alias="TEMPLATE_CACHE_TTL")  # 1 hour
    template_cache_max_size: int = Field(default=500, alias="TEMPLATE_CACHE_MAX_SIZE")
    max_templates_per_query: int = Field(default=50, alias="MAX_TEMPLATES_PER_QUERY")

    # ==========================================================================
    # SCORING (weights must sum to 1.0)
    # ==========================================================================
    relevance_weight: float = Field(default=0.4, alias="RELEVANCE_WEIGHT")
    diversity_weight: float = Field(default=0.25, alias="DIVERSITY_WEIGHT")
    complexity_weight: float = Field(default=0.2, alias="COMPLEXITY_WEIGHT")
    specificity_weight: float = Field(default=0.15, alias="SPECIFICITY_WEIGHT")
    min_score: float = Field(default=0.3, alias="MIN_SCORE")

    @property
    def scoring_weights(self) -> dict:
        """Weight vector for the query scorer."""
        return {
            "relevance": self.relevance_weight,
            "diversity": self.diversity_weight,
            "complexity": self.complexity_weight,
            "specificity": self.specificity_weight,
        }

    # ==========================================================================
    # DEDUPLICATION
    # ==========================================================================
    dedup_enabled: bool = Field(default=True, alias="DEDUP_ENABLED")
    dedup_method: str = Field(default="hybrid", alias="DEDUP_METHOD")  # "exact", "semantic", "hybrid"
    similarity_threshold: float = Field(default=0.8, alias="SIMILARITY_THRESHOLD")

    # ==========================================================================
    # AI SERVICE OPTIMIZER (cache / batching / retry)
    # ==========================================================================
    ai_cache_enabled: bool = Field(default=True, alias="AI_CACHE_ENABLED")
    ai_cache_max_size: int = Field(default=1000, alias="AI_CACHE_MAX_SIZE")
    ai_cache_ttl: float = Field(default=1800.0, alias="AI_CACHE_TTL")  # 30 minutes
    ai_request_dedup_enabled: bool = Field(default=True, alias="AI_REQUEST_DEDUP_ENABLED")
    ai_batching_enabled: bool = Field(default=True, alias="AI_BATCHING_ENABLED")
    ai_max_batch_size: int = Field(default=10, alias="AI_MAX_BATCH_SIZE")
    ai_batch_timeout: float = Field(default=5.0, alias="AI_BATCH_TIMEOUT")
    # Enhancement calls ("query-generation") are latency sensitive, so only
    # bulk search traffic is batched unless configured otherwise.
    ai_batchable_types: list[str] = Field(default=["search"], alias="AI_BATCHABLE_TYPES")
    ai_retry_enabled: bool = Field(default=True, alias="AI_RETRY_ENABLED")
    ai_max_retries: int = Field(default=3, alias="AI_MAX_RETRIES")
    ai_retry_delay: float = Field(default=1.0, alias="AI_RETRY_DELAY")

    # ==========================================================================
    # HTTP OPTIMIZER (response cache / compression / rate limits)
    # ==========================================================================
    api_cache_enabled: bool = Field(default=True, alias="API_CACHE_ENABLED")
    api_cache_ttl: float = Field(default=300.0, alias="API_CACHE_TTL")  # 5 minutes
    api_cache_max_size: int = Field(default=1000, alias="API_CACHE_MAX_SIZE")
    compression_threshold: int = Field(default=1024, alias="COMPRESSION_THRESHOLD")  # bytes
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_window: float = Field(default=60.0, alias="RATE_LIMIT_WINDOW")  # seconds
    rate_limit_max: int = Field(default=100, alias="RATE_LIMIT_MAX")  # requests per window
    cache_sweep_interval: float = Field(default=300.0, alias="CACHE_SWEEP_INTERVAL")

    # ==========================================================================
    # PERSISTENCE
    # ==========================================================================
    performance_tracking_enabled: bool = Field(default=True, alias="PERFORMANCE_TRACKING_ENABLED")
    persistence_max_concurrency: int = Field(default=5, alias="PERSISTENCE_MAX_CONCURRENCY")

    # ==========================================================================
    # PATHS
    # ==========================================================================
    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        return Path(__file__).parent.parent

    @property
    def data_dir(self) -> Path:
        """Get the data directory."""
        return self.project_root / "data"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str = None) -> None:
    """Configure root logging once for the API and CLI entry points."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# Global settings instance
settings = get_settings()
