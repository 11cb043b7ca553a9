"""Application configuration using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Checked at startup, not at import
    openai_api_key: str = Field(default="", description="OpenAI API key")

    # Database
    database_path: Path = Field(
        default=Path("./data/app.db"),
        description="Path to SQLite database file",
    )

    # Content store
    vector_db_path: Path = Field(
        default=Path("./vector_store/chroma_index"),
        description="Path to vector database storage",
    )
    content_collection: str = Field(
        default="content_chunks",
        description="ChromaDB collection holding curated content chunks",
    )
    embedding_model: str = Field(
        default="text-embedding-ada-002",
        description="OpenAI embedding model name",
    )

    # OpenAI Models
    generation_model: str = Field(
        default="gpt-4o",
        description="OpenAI model for question generation",
    )
    grading_model: str = Field(
        default="gpt-4o",
        description="OpenAI model for short-answer rubric grading",
    )
    generation_max_tokens: int = Field(default=4096, ge=1)
    grading_max_tokens: int = Field(default=500, ge=1)
    llm_timeout_sec: float = Field(
        default=60.0,
        gt=0,
        description="Timeout applied to every generative model call",
    )

    # Generation
    min_question_count: int = Field(default=5, ge=1)
    max_question_count: int = Field(default=50, ge=1)
    max_context_chars: int = Field(
        default=24000,
        ge=1000,
        description="Upper bound on reference text placed in the generation prompt",
    )
    retrieval_chunks_per_question: int = Field(default=3, ge=1)
    max_retrieval_chunks: int = Field(default=30, ge=1, le=100)
    generation_workers: int = Field(
        default=4,
        ge=1,
        description="Worker threads running generation jobs",
    )

    # Scoring
    short_answer_pass_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    grading_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Model calls allowed per short answer before it is marked ungraded",
    )

    # Identity provider
    auth_jwt_secret: str = Field(
        default="",
        description="Shared secret used to verify access tokens from the auth provider",
    )
    auth_jwt_audience: str = Field(default="authenticated")
    auth_jwt_algorithm: str = Field(default="HS256")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Environment (development/production)"
    )

    # Security
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_per_minute: int = Field(
        default=10, ge=1, description="Generation requests per minute per IP"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def retrieval_limit(self, question_count: int) -> int:
        """Number of content chunks fetched for a job of ``question_count`` questions."""
        return min(
            question_count * self.retrieval_chunks_per_question,
            self.max_retrieval_chunks,
        )


# Global settings instance
settings = Settings()
