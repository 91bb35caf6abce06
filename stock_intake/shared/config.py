"""Shared configuration management for the stock intake service.

Based on Pydantic Settings v2:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_BACKEND_BASE_URL=https://backend.example.com
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="stock-intake-service",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Establishment backend (products, suppliers, stock movements)
    backend_base_url: str = Field(
        default="http://localhost:3001",
        description="Base URL of the establishment REST backend",
    )
    backend_token: str = Field(
        default="",
        description="Bearer token for the backend (use env var APP_BACKEND_TOKEN)",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for backend requests in seconds",
        gt=0,
    )

    # OCR provider configuration
    ocr_provider: Literal["backend", "openai"] = Field(
        default="backend",
        description="OCR provider: backend (establishment OCR endpoint), openai (vision model)",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used for invoice OCR when ocr_provider='openai'",
    )
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (falls back to OPENAI_API_KEY)",
    )

    # Ingestion sessions
    session_ttl_seconds: float = Field(
        default=3600.0,
        description="Idle time after which an ingestion session is discarded",
        gt=0,
    )

    # Upload limits
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum invoice image size in bytes",
    )

    # Ingestion rules
    new_product_markup: float = Field(
        default=1.3,
        description="Sale price multiplier applied to products created from invoices",
    )
    product_match_threshold: float = Field(
        default=0.3,
        description="Minimum confidence to auto-associate a line item to a product",
        ge=0,
        le=1,
    )
    supplier_match_threshold: float = Field(
        default=0.5,
        description="Minimum name-match confidence to auto-select a supplier",
        ge=0,
        le=1,
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
