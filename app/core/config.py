"""Configuration management for the knowledge-gap engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Providers
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key (embeddings)")
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key (cluster labels)")

    # Environment
    GAP_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=768, description="Embedding vector dimension")
    EMBEDDING_BATCH_SIZE: int = Field(default=25, description="Texts per embeddings request")

    # Retrieval: recall is intentionally wider than what is shown as a citation
    RETRIEVAL_MATCH_COUNT: int = Field(default=8, description="Passages fetched per chat turn")
    RETRIEVAL_MIN_SIMILARITY: float = Field(
        default=0.5, description="Recall threshold for the vector search"
    )
    SOURCE_DISPLAY_THRESHOLD: float = Field(
        default=0.65, description="Minimum similarity for a passage to be cited"
    )
    MAX_DISPLAY_SOURCES: int = Field(default=3, description="Max cited sources per answer")

    # Clustering
    CLUSTER_ASSIGNMENT_THRESHOLD: float = Field(
        default=0.82, description="Min centroid similarity to join an existing cluster"
    )
    ORPHAN_CLUSTER_THRESHOLD: float = Field(
        default=0.82, description="Similarity threshold for grouping legacy orphan questions"
    )
    ORPHAN_BATCH_LIMIT: int = Field(default=200, description="Max questions loaded for the admin view")
    CENTROID_STRATEGY: str = Field(
        default="approximate", description="Centroid maintenance on removal: approximate, exact"
    )
    ASSIGNMENT_SERIALIZATION: str = Field(
        default="none", description="Concurrent assignment policy: none, per_school"
    )

    # Alerts
    ALERT_BOUNDARIES: list[int] = Field(
        default=[5, 10], description="Question counts that trigger a knowledge-gap alert"
    )

    # Labeling
    LABEL_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for cluster topic labels"
    )

    # Document processing trigger
    PROCESS_DOCUMENT_URL: str = Field(
        default="", description="Endpoint that chunks + embeds a newly written document"
    )
    PROCESS_DOCUMENT_SECRET: str = Field(
        default="", description="Shared secret sent as x-process-secret"
    )

    @field_validator("ALERT_BOUNDARIES")
    @classmethod
    def _validate_boundaries(cls, v: list[int]) -> list[int]:
        if any(b <= 0 for b in v):
            raise ValueError("ALERT_BOUNDARIES must be positive")
        return sorted(set(v))

    @field_validator("CENTROID_STRATEGY")
    @classmethod
    def _validate_centroid_strategy(cls, v: str) -> str:
        if v not in ("approximate", "exact"):
            raise ValueError("CENTROID_STRATEGY must be 'approximate' or 'exact'")
        return v

    @field_validator("ASSIGNMENT_SERIALIZATION")
    @classmethod
    def _validate_serialization(cls, v: str) -> str:
        if v not in ("none", "per_school"):
            raise ValueError("ASSIGNMENT_SERIALIZATION must be 'none' or 'per_school'")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
