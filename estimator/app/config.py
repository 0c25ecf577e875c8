from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_env: str = Field(
        ...,
        description="Application environment (development, staging, production)",
    )

    database_url: str = Field(
        ...,
        description="PostgreSQL connection string",
    )

    redis_url: str = Field(
        ...,
        description="Redis connection string",
    )

    s3_endpoint_url: str = Field(
        ...,
        description="S3-compatible endpoint URL",
    )
    s3_access_key: str = Field(
        ...,
        description="S3 access key",
    )
    s3_secret_key: str = Field(
        ...,
        description="S3 secret key",
    )
    s3_bucket_name: str = Field(
        ...,
        description="S3 bucket holding uploaded estimates and structure snapshots",
    )
    s3_region: str = Field(
        default="auto",
        description="S3 region (use 'auto' for Cloudflare R2)",
    )

    log_dir: str = Field(
        default="./logs",
        description="Directory for log files",
    )

    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    openai_api_key: str | None = Field(
        default=None,
        description="API key for the AI classification provider",
    )
    openai_api_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI API base URL (or compatible API endpoint)",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for last-resort item classification",
    )
    ai_classification_enabled: bool = Field(
        default=True,
        description="Enable the AI fallback strategy in the classification pipeline",
    )
    ai_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single AI provider call; a timeout counts as a provider error",
    )

    classification_chunk_size: int = Field(
        default=200,
        ge=1,
        le=2000,
        description="Maximum rows per classification batch",
    )
    snapshot_lock_ttl_seconds: int = Field(
        default=60,
        ge=1,
        description="TTL of the per-estimate lock held during snapshot pointer swaps",
    )
    job_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts before a retryable job is marked FAILED",
    )


def get_settings() -> Settings:
    return Settings()
