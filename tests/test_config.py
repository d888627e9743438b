# tests/test_config.py
import io
import json
import logging

import pytest  # pyright: ignore[reportMissingImports]
import structlog
from pydantic import ValidationError as PydanticValidationError

from llm2ui.config import (
    ConfigurationError,
    GenerationConfig,
    RetryConfig,
    Settings,
    load_generation_config,
)
from llm2ui.logging_config import configure_logging


def test_provider_defaults_are_merged():
    cfg = load_generation_config({"provider": "openai", "api_key": "k"})
    assert cfg.model == "gpt-4o-mini"
    assert cfg.endpoint == "https://api.openai.com/v1"
    assert cfg.max_tokens == 4096
    assert cfg.temperature == 0.7
    assert cfg.timeout_seconds == 60.0


def test_explicit_values_win_over_defaults():
    cfg = load_generation_config({"provider": "anthropic", "api_key": "k", "model": "claude-x", "temperature": 0.0})
    assert cfg.model == "claude-x"
    assert cfg.temperature == 0.0


def test_unknown_fields_are_ignored():
    cfg = load_generation_config({"provider": "iflow", "api_key": "k", "legacy_flag": True})
    assert not hasattr(cfg, "legacy_flag")


def test_every_problem_is_reported():
    with pytest.raises(ConfigurationError) as exc:
        load_generation_config({"provider": "custom", "api_key": "", "temperature": 1.5, "max_tokens": 0})
    errors = exc.value.errors
    assert any(e.startswith("temperature") for e in errors)
    assert any(e.startswith("max_tokens") for e in errors)
    assert "api_key is required" in errors
    assert "model is required" in errors
    assert "endpoint is required for custom provider" in errors
    assert str(exc.value).startswith("Invalid generation config: ")


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        load_generation_config({"provider": "openai"})


def test_generation_config_instance_is_accepted():
    cfg = GenerationConfig(provider="custom", api_key="k", model="m", endpoint="http://localhost:8000/v1")
    assert load_generation_config(cfg).max_tokens == 4096


def test_retry_config_bounds():
    assert RetryConfig().max_attempts == 3
    with pytest.raises(PydanticValidationError):
        RetryConfig(max_attempts=0)
    with pytest.raises(PydanticValidationError):
        RetryConfig(per_attempt_timeout=0)
    with pytest.raises(PydanticValidationError):
        RetryConfig(unknown=1)


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("LLM2UI_PROVIDER", "anthropic")
    monkeypatch.setenv("LLM2UI_API_KEY", "secret")
    monkeypatch.setenv("LLM2UI_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("LLM2UI_LANGUAGE", "zh")
    settings = Settings(_env_file=None)
    assert settings.retry_config().max_attempts == 5
    assert settings.retry_config(max_attempts=2).max_attempts == 2
    cfg = settings.generation_config()
    assert cfg.provider == "anthropic"
    assert cfg.model == "claude-3-5-sonnet-latest"
    assert settings.language == "zh"


def test_settings_generation_config_raises_without_key(monkeypatch):
    monkeypatch.delenv("LLM2UI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        Settings(_env_file=None).generation_config()


# -------------------------
# Logging
# -------------------------

@pytest.fixture
def log_stream():
    stream = io.StringIO()
    yield stream
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


def test_json_logs_carry_event_and_bound_context(log_stream):
    configure_logging(json_logs=True, log_level="INFO", stream=log_stream)
    with structlog.contextvars.bound_contextvars(run_id="abc123"):
        structlog.get_logger("llm2ui.test").info("attempt_failed", attempt=2, errors=1)

    line = log_stream.getvalue().strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "attempt_failed"
    assert record["attempt"] == 2
    assert record["run_id"] == "abc123"
    assert record["level"] == "info"


def test_log_level_filters(log_stream):
    configure_logging(json_logs=True, log_level="WARNING", stream=log_stream)
    structlog.get_logger().info("quiet")
    structlog.get_logger().warning("loud")
    out = log_stream.getvalue()
    assert "quiet" not in out
    assert "loud" in out
