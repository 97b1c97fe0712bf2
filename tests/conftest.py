"""Shared pytest fixtures for gateway tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

TEST_SECRETS_KEY = "0123456789abcdef" * 4


@pytest.fixture(autouse=True)
def _gateway_env(monkeypatch):
    """Deterministic environment: test encryption key, no fallbacks.

    Fallback secret/token would make signature and handshake tests pass
    for the wrong reason, so they are cleared unless a test sets them.
    """
    monkeypatch.setenv("WAGATE_SECRETS_KEY", TEST_SECRETS_KEY)
    monkeypatch.delenv("WAGATE_APP_SECRET", raising=False)
    monkeypatch.delenv("WAGATE_WEBHOOK_VERIFY_TOKEN", raising=False)
    monkeypatch.delenv("WAGATE_GRAPH_BASE_URL", raising=False)
    monkeypatch.delenv("WAGATE_GRAPH_API_VERSION", raising=False)
    monkeypatch.delenv("WAGATE_HTTP_TIMEOUT", raising=False)
    monkeypatch.delenv("APP_ROLE", raising=False)


@pytest.fixture
def no_retry_delay(monkeypatch):
    """Skip the sleep between transport retries."""
    monkeypatch.setattr("wagate.whatsapp.meta_sender.RETRY_DELAY", 0)
