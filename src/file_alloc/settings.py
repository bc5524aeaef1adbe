# src/file_alloc/settings.py
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


VALID_DEPLOYMENT_MODES = ["local-dev", "aws-mock", "aws-prod"]


class Settings(BaseSettings):
    """
    Single source of truth for all application settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from file_alloc.settings import get_settings
        settings = get_settings()
        bucket_name = settings.s3_bucket_name
    """

    # Application Settings
    app_name: str = Field(
        default="file-alloc",
        description="Application name"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="local-dev",
        description="Deployment mode: local-dev, aws-mock, or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    # S3 Configuration
    s3_bucket_name: str = Field(
        default="file-alloc-storage",
        description="S3 bucket holding uploaded objects"
    )

    url_expiration_seconds: int = Field(
        default=60,
        ge=1,
        description="Lifetime of pre-signed upload and download URLs"
    )

    # SQS Configuration
    sqs_queue_name: str = Field(
        default="file-alloc-jobs.fifo",
        description="SQS FIFO queue name for processing jobs"
    )

    sqs_queue_url: Optional[str] = Field(
        default=None,
        alias="SQS_QUEUE_URL",
        description="Full SQS queue URL"
    )

    # Alloc table
    db_path: str = Field(
        default="files.db",
        description="SQLite database holding the files alloc table"
    )

    file_bucket: str = Field(
        default="files",
        description="Logical bucket (namespace) served by this deployment"
    )

    # Reconciliation
    reprocess_days: int = Field(
        default=3,
        ge=0,
        description="Age in days after which unprocessed files are processed again"
    )

    expiry_days: int = Field(
        default=3,
        ge=0,
        description="Age in days after which never-uploaded entries are deleted"
    )

    # Validation
    max_file_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Reject uploads larger than this many bytes (no limit when unset)"
    )

    # Storage Configuration
    storage_dir: str = Field(
        default="storage",
        description="Local storage directory (local queue data)"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('deployment_mode', mode='before')
    @classmethod
    def normalize_deployment_mode(cls, v):
        """Normalize deployment mode values for backwards compatibility."""
        if v:
            mode_mapping = {
                "local-mock": "local-dev",
                "cloud": "aws-prod",
            }
            return mode_mapping.get(v, v)
        return v

    @field_validator('deployment_mode')
    @classmethod
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        if v not in VALID_DEPLOYMENT_MODES:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {VALID_DEPLOYMENT_MODES}")
        return v

    @model_validator(mode='after')
    def apply_mode_defaults(self):
        """Fill endpoint, mock credentials and queue URL for local modes."""
        if self.deployment_mode in ["local-dev", "aws-mock"]:
            if self.aws_endpoint_url is None:
                self.aws_endpoint_url = "http://localhost:5000"
            if self.aws_access_key_id is None:
                self.aws_access_key_id = "mock"
            if self.aws_secret_access_key is None:
                self.aws_secret_access_key = "mock"
            if self.sqs_queue_url is None:
                # moto serves queues without an account number in the path
                self.sqs_queue_url = f"{self.aws_endpoint_url}/queue/{self.sqs_queue_name}"
        return self

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.local-dev", ".env.aws-mock", ".env.aws-prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
