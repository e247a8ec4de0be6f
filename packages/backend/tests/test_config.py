"""Tests for env-driven settings."""

import pytest
from pydantic import ValidationError

from findme.config import Settings


def test_defaults():
    s = Settings()

    assert s.embedding.queue_size == 100
    assert s.embedding.workers == 10
    assert s.embedding.rpc_address == "emb:8000"
    assert s.recommendation.rpc_address == "rec:8050"
    assert s.chat.broadcast_buffer == 1000
    assert s.scheduler.trial_cron == "0 9 * * *"
    assert s.scheduler.reminder_window_hours == 48


def test_nested_env_overrides(monkeypatch):
    monkeypatch.setenv("FINDME_EMBEDDING__QUEUE_SIZE", "7")
    monkeypatch.setenv("FINDME_RECOMMENDATION__RPC_ADDRESS", "localhost:9050")
    monkeypatch.setenv("FINDME_SCHEDULER__TRIAL_CRON", "30 8 * * 1-5")

    s = Settings()

    assert s.embedding.queue_size == 7
    assert s.embedding.workers == 10
    assert s.recommendation.rpc_address == "localhost:9050"
    assert s.scheduler.trial_cron == "30 8 * * 1-5"


def test_queue_size_must_be_positive(monkeypatch):
    monkeypatch.setenv("FINDME_CHAT__CLIENT_BUFFER", "0")

    with pytest.raises(ValidationError):
        Settings()


def test_production_requires_jwt_secret(monkeypatch):
    monkeypatch.setenv("FINDME_ENVIRONMENT", "production")

    with pytest.raises(ValidationError):
        Settings()

    monkeypatch.setenv("FINDME_JWT_SECRET", "a-real-secret-value-for-production")
    assert Settings().environment == "production"
