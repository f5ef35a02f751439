"""Centralized configuration management for subgate.

Uses Pydantic BaseSettings for environment variable loading with validation.
Configuration is loaded once at startup and injected via dependency.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from subgate.file_format import parse_size

# category:index pairs separated by commas
INDEXER_MAPPING_PATTERN = re.compile(r"^(\w+:\w+)(,\w+:\w+)*$")


class Settings(BaseSettings):
    """subgate application settings.

    All settings can be overridden via environment variables.
    Environment variable names are uppercase versions of the field names.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========== Environment ==========
    subgate_env: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )

    # ========== API Server ==========
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3030, description="API server port")
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins (* for all)",
    )
    server_upload_limit: str = Field(
        default="10mb",
        description="Maximum accepted size of one uploaded data file",
    )

    # ========== AWS / Persistence ==========
    aws_default_region: str = Field(default="us-west-2", description="AWS region for DynamoDB")
    aws_profile: Optional[str] = Field(
        default=None,
        description="AWS profile name (None uses default credentials chain)",
    )
    submission_files_table: str = Field(
        default="subgate-submission-files",
        description="DynamoDB table mapping submissions to analyses",
    )

    # ========== Submission Registry ==========
    registry_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the submission registry service",
    )
    registry_timeout_seconds: float = Field(default=30.0, description="Registry HTTP timeout")

    # ========== Sequencing (Analysis Service) ==========
    sequencing_submission_enabled: bool = Field(
        default=False,
        description="Submit sequencing file metadata to the analysis service",
    )
    sequencing_submission_url: Optional[str] = Field(
        default=None,
        description="Base URL of the analysis service",
    )
    sequencing_submission_token_url: Optional[str] = Field(
        default=None,
        description="OAuth2 token endpoint used for client-credentials grant",
    )
    sequencing_submission_client_id: Optional[str] = Field(default=None, description="OAuth2 client id")
    sequencing_submission_client_secret: Optional[str] = Field(default=None, description="OAuth2 client secret")
    sequencing_submission_filename_identifier_column: Optional[str] = Field(
        default=None,
        description="Record column matched against the identifier parsed from sequencing file names",
    )
    sequencing_submission_allow_duplicates: bool = Field(
        default=False,
        description="Ask the analysis service to accept duplicate analyses",
    )
    sequencing_template_dir: Optional[str] = Field(
        default=None,
        description="Directory overriding the bundled payload templates",
    )
    analysis_service_timeout_seconds: float = Field(default=30.0, description="Analysis service HTTP timeout")
    manifest_max_workers: int = Field(
        default=4,
        description="Parallel analysis lookups when assembling a submission manifest",
    )

    # ========== Indexer ==========
    indexer_enabled: bool = Field(default=False, description="Notify the indexer after commits")
    indexer_server_url: Optional[str] = Field(default=None, description="Indexer base URL")
    indexer_mapping: Optional[str] = Field(
        default=None,
        description="Comma-separated category:index pairs",
    )
    indexer_request_delay_seconds: float = Field(
        default=0.5,
        description="Delay between indexer notifications",
    )

    @field_validator("subgate_env")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"subgate_env must be one of: {allowed}")
        return v.lower()

    @field_validator("indexer_mapping")
    @classmethod
    def validate_indexer_mapping(cls, v: Optional[str]) -> Optional[str]:
        """Validate the category:index mapping format."""
        if v and not INDEXER_MAPPING_PATTERN.match(v):
            raise ValueError(
                "Invalid format. The correct format is 'category:index' pairs separated by commas."
            )
        return v

    @field_validator("server_upload_limit")
    @classmethod
    def validate_upload_limit(cls, v: str) -> str:
        """Ensure the upload limit is a parseable size."""
        parse_size(v)
        return v

    @model_validator(mode="after")
    def validate_feature_dependencies(self) -> "Settings":
        """Features that are switched on must have their endpoints configured."""
        if self.indexer_enabled and not (self.indexer_server_url and self.indexer_mapping):
            raise ValueError(
                "When INDEXER_ENABLED is true, both INDEXER_SERVER_URL and INDEXER_MAPPING "
                "must be provided and cannot be empty."
            )
        if self.sequencing_submission_enabled and not self.sequencing_submission_url:
            raise ValueError(
                "When SEQUENCING_SUBMISSION_ENABLED is true, SEQUENCING_SUBMISSION_URL must be provided."
            )
        return self

    def get_cors_origins(self) -> List[str]:
        """Get list of CORS origins from comma-separated string.

        Raises ValueError if wildcard is used in production.
        """
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        if self.subgate_env == "production" and "*" in origins:
            raise ValueError(
                "Wildcard CORS origin (*) is not allowed in production. "
                "Set CORS_ORIGINS to a comma-separated list of allowed origins."
            )
        return origins

    def get_upload_limit_bytes(self) -> int:
        """Upload limit in bytes."""
        return parse_size(self.server_upload_limit)

    @property
    def identifier_column(self) -> Optional[str]:
        """Configured sequencing identifier column, or None when blank."""
        column = (self.sequencing_submission_filename_identifier_column or "").strip()
        return column or None

    @property
    def sequencing_configured(self) -> bool:
        """Sequencing submissions are enabled and can be reconciled."""
        return bool(self.sequencing_submission_enabled and self.identifier_column)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.subgate_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.subgate_env == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the application.
    Use this function as a FastAPI dependency.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()


def get_settings_for_testing(**overrides) -> Settings:
    """Create settings instance with overrides for testing.

    This bypasses the cache (and the .env file), allowing tests to use
    custom configuration.
    """
    return Settings(_env_file=None, **overrides)
