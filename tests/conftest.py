"""Shared pytest fixtures."""

import pytest

from app.logging.context import clear_log_context

ENV_VARS = (
    "DATABASE_URL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "SMTP_SENDER_NAME",
    "SMTP_SENDER_ADDRESS",
    "PUSH_GATEWAY_URL",
    "PUSH_GATEWAY_TOKEN",
    "LOG_LEVEL",
)


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Start from an empty environment and set a working SMTP server."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SMTP_HOST", "smtp.test.com")
    monkeypatch.setenv("SMTP_PORT", "587")
    return monkeypatch


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the environment loader reads."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture(autouse=True)
def reset_log_context():
    clear_log_context()
    yield
    clear_log_context()
