# src/llm2ui/config.py
"""
Configuration for llm2ui.

- Settings: process defaults loaded from environment / .env (pydantic-settings).
- GenerationConfig: what the generation capability needs to talk to a provider.
- RetryConfig: bounds for one orchestration run.

Configuration errors are programmer errors: they are raised before any
attempt is made and are never retried.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


Provider = Literal["openai", "anthropic", "iflow", "custom"]


class ConfigurationError(ValueError):
    """Invalid GenerationConfig. `errors` lists every problem found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid generation config: " + "; ".join(self.errors))


# -------------------------
# Provider defaults
# -------------------------

PROVIDER_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "openai": {
        "endpoint": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
        "max_tokens": 4096,
        "temperature": 0.7,
        "timeout_seconds": 60.0,
    },
    "anthropic": {
        "endpoint": "https://api.anthropic.com",
        "model": "claude-3-5-sonnet-latest",
        "max_tokens": 4096,
        "temperature": 0.7,
        "timeout_seconds": 60.0,
    },
    "iflow": {
        "endpoint": "https://apis.iflow.cn/v1",
        "model": "glm-4.6",
        "max_tokens": 4096,
        "temperature": 0.7,
        "timeout_seconds": 60.0,
    },
    "custom": {
        "max_tokens": 4096,
        "temperature": 0.7,
        "timeout_seconds": 60.0,
    },
}


# -------------------------
# Generation config
# -------------------------


class GenerationConfig(BaseModel):
    """
    Normalized provider settings.

    Unknown extra fields are ignored so configs stored by older/newer
    versions still load. Range checks live on the fields; cross-field
    checks live in `problems()`.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    provider: Provider
    api_key: str = ""
    model: str = ""
    endpoint: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    system_prompt: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    def problems(self) -> List[str]:
        """Cross-field problems; empty when the config is usable."""
        errors: List[str] = []
        if not self.api_key.strip():
            errors.append("api_key is required")
        if not self.model.strip():
            errors.append("model is required")
        if self.provider == "custom" and not (self.endpoint or "").strip():
            errors.append("endpoint is required for custom provider")
        return errors

    def with_provider_defaults(self) -> GenerationConfig:
        """Fill unset optional fields from PROVIDER_DEFAULTS[provider]."""
        defaults = PROVIDER_DEFAULTS.get(self.provider, PROVIDER_DEFAULTS["custom"])
        update = {
            k: v
            for k, v in defaults.items()
            if getattr(self, k) in (None, "")
        }
        return self.model_copy(update=update) if update else self


def _format_pydantic_errors(exc: PydanticValidationError) -> List[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        out.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return out


def _raw_problems(data: Mapping[str, Any]) -> List[str]:
    # Cross-field rules re-checked on raw input when field parsing already failed.
    errors: List[str] = []
    provider = data.get("provider")
    defaults = PROVIDER_DEFAULTS.get(str(provider), {})
    if not str(data.get("api_key") or "").strip():
        errors.append("api_key is required")
    if not str(data.get("model") or defaults.get("model") or "").strip():
        errors.append("model is required")
    if provider == "custom" and not str(data.get("endpoint") or "").strip():
        errors.append("endpoint is required for custom provider")
    return errors


def load_generation_config(data: Mapping[str, Any] | GenerationConfig) -> GenerationConfig:
    """
    Parse + check a generation config, merging provider defaults.

    Raises ConfigurationError listing every problem (field ranges and
    cross-field rules together).
    """
    if isinstance(data, GenerationConfig):
        cfg = data
    else:
        try:
            cfg = GenerationConfig.model_validate(dict(data))
        except PydanticValidationError as e:
            raise ConfigurationError(_format_pydantic_errors(e) + _raw_problems(data)) from e

    cfg = cfg.with_provider_defaults()
    problems = cfg.problems()
    if problems:
        raise ConfigurationError(problems)
    return cfg


# -------------------------
# Retry config
# -------------------------


class RetryConfig(BaseModel):
    """Bounds for one orchestration run. Durations are seconds."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(default=3, ge=1, description="Upper bound on generate/validate cycles.")
    per_attempt_timeout: float = Field(default=60.0, gt=0, description="Cap on a single generate call.")
    total_timeout: float = Field(default=180.0, gt=0, description="Cap on the whole run.")


# -------------------------
# Process settings
# -------------------------


class Settings(BaseSettings):
    """Process-level defaults with environment variable loading (LLM2UI_*)."""

    model_config = SettingsConfigDict(
        env_prefix="LLM2UI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # logging
    log_level: str = "INFO"
    json_logs: bool = False

    # provider
    provider: Provider = "openai"
    api_key: str = ""
    model: str = ""
    endpoint: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    request_timeout_seconds: Optional[float] = None

    # retry
    max_attempts: int = 3
    per_attempt_timeout: float = 60.0
    total_timeout: float = 180.0

    # prompt
    token_budget: int = 6000
    language: Literal["en", "zh"] = "en"
    fix_prompt_max_output_chars: int = 4000

    # cache
    cache_max_size: Optional[int] = 100
    cache_ttl_seconds: Optional[float] = None

    def generation_config(self, **overrides: Any) -> GenerationConfig:
        """Build and check a GenerationConfig from these settings."""
        data: Dict[str, Any] = {
            "provider": self.provider,
            "api_key": self.api_key,
            "model": self.model,
            "endpoint": self.endpoint,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout_seconds": self.request_timeout_seconds,
        }
        data.update(overrides)
        return load_generation_config(data)

    def retry_config(self, **overrides: Any) -> RetryConfig:
        data: Dict[str, Any] = {
            "max_attempts": self.max_attempts,
            "per_attempt_timeout": self.per_attempt_timeout,
            "total_timeout": self.total_timeout,
        }
        data.update(overrides)
        return RetryConfig(**data)
