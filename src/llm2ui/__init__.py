# src/llm2ui/__init__.py
"""
llm2ui

Recover a validated UI schema (component tree JSON) from free-form LLM
output: fenced-block extraction, schema validation, and a bounded retry loop
that feeds validation errors back to the model.

Exports:
    UISchemaPipeline, RetryOrchestrator, CancellationToken for orchestration
    GenerationConfig, RetryConfig, Settings for configuration
    UISchema, RetryResult, AttemptResult, ValidationResult for artifacts
    extract_json, extract_ui_schema, validate for standalone use
"""

__version__ = "0.1.0"

from .cache import PromptCache, make_cache_key
from .catalog import StaticCatalog, default_catalog
from .config import ConfigurationError, GenerationConfig, RetryConfig, Settings, load_generation_config
from .core import CancellationToken, RetryOrchestrator, UISchemaPipeline, compute_fix_rate
from .extraction import extract_blocks, extract_json, extract_ui_schema
from .llm import LocalMock, create_llm
from .prompts import PromptBuilder, build_fix_prompt
from .schemas import (
    AttemptResult,
    ErrorCode,
    RetryResult,
    UIComponent,
    UISchema,
    ValidationError,
    ValidationResult,
)
from .validation import SchemaValidator, validate

__all__ = [
    "UISchemaPipeline",
    "RetryOrchestrator",
    "CancellationToken",
    "compute_fix_rate",
    "GenerationConfig",
    "RetryConfig",
    "Settings",
    "ConfigurationError",
    "load_generation_config",
    "UISchema",
    "UIComponent",
    "RetryResult",
    "AttemptResult",
    "ValidationResult",
    "ValidationError",
    "ErrorCode",
    "extract_blocks",
    "extract_json",
    "extract_ui_schema",
    "SchemaValidator",
    "validate",
    "PromptBuilder",
    "build_fix_prompt",
    "PromptCache",
    "make_cache_key",
    "StaticCatalog",
    "default_catalog",
    "LocalMock",
    "create_llm",
]
