"""Gateway settings."""
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway config from env."""

    app_name: str = "UHRP CDN Gateway"
    # development returns pretend upload grants without touching a backend
    environment: str = "production"
    # Structured logging: set LOG_JSON=1 for one-JSON-object-per-line (CloudWatch, etc.)
    log_json: bool = False
    log_level: str = "INFO"
    # If set, /metrics requires X-Metrics-Secret; /notify always requires X-Admin-Token when admin_token is set
    metrics_secret: str | None = None

    # Storage: aws (S3) or gcs. Bucket accepts the provider-specific names too.
    storage_provider: str = "gcs"  # gcs | aws
    storage_bucket_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("storage_bucket_name", "aws_bucket_name", "gcp_bucket_name"),
    )
    aws_region: str = "us-west-2"
    gcp_project_id: str | None = None
    # Service account JSON; unset = application default credentials
    gcp_credentials_file: str | None = None

    # Upload grants
    upload_strategy: str = "header"  # header | form
    upload_grant_ttl_seconds: int = 604800  # 1 week
    custom_time_grace_seconds: int = 300
    download_grant_ttl_seconds: int = 3600

    # Ingestion (change notifications via SQS)
    sqs_queue_url: str | None = None
    sqs_max_messages: int = 10
    sqs_wait_time_seconds: int = 20
    poll_error_backoff_seconds: float = 5.0
    ingest_max_workers: int = 10
    ingest_enabled: bool = True
    default_expiry_days: int = 30
    download_chunk_size: int = 1024 * 1024

    # Registration endpoint (POST {hosting_domain}/advertise)
    hosting_domain: str | None = None
    admin_token: str | None = None
    registration_timeout_seconds: float = 30.0

    # Advertisement lookups (HTTP wallet)
    wallet_url: str | None = None
    wallet_originator: str = "uhrp-cdn-gateway"
    advertisement_basket: str = "uhrp advertisements"
    resolver_default_limit: int = 200

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
