"""Fixtures for unit tests."""

import pytest

from src.core.config import Settings


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings as ``get_settings()`` will see them, with a recognizable name."""
    monkeypatch.setenv("APP_NAME", "TestApp")
    monkeypatch.setenv("APP_VERSION", "1.0.0")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("API_PORT", "3000")
    return Settings()
