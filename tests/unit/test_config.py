"""Unit tests for configuration management."""

import os
from collections.abc import Generator

import pytest
from pydantic import ValidationError

from stock_intake.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings()

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "stock-intake-service"
    assert settings.backend_base_url == "http://localhost:3001"
    assert settings.ocr_provider == "backend"
    assert settings.new_product_markup == 1.3
    assert settings.product_match_threshold == 0.3
    assert settings.supplier_match_threshold == 0.5
    assert settings.session_ttl_seconds == 3600.0


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_BACKEND_BASE_URL"] = "https://backend.example.com"
    os.environ["APP_OCR_PROVIDER"] = "openai"
    os.environ["APP_HTTP_TIMEOUT_SECONDS"] = "5"

    settings = Settings()

    assert settings.environment == "production"
    assert settings.backend_base_url == "https://backend.example.com"
    assert settings.ocr_provider == "openai"
    assert settings.http_timeout_seconds == 5.0


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings()

    assert settings.log_level == "DEBUG"


def test_settings_reject_unknown_ocr_provider(clean_env: None) -> None:
    """Only registered OCR providers are accepted."""
    with pytest.raises(ValidationError):
        Settings(ocr_provider="tesseract")  # type: ignore[arg-type]


def test_settings_reject_threshold_out_of_range(clean_env: None) -> None:
    with pytest.raises(ValidationError):
        Settings(product_match_threshold=1.5)


def test_get_settings_factory(clean_env: None) -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service_name == "stock-intake-service"
