# src/llm2ui/schemas.py
"""
Pydantic models for llm2ui.

These models are:
- JSON/JSONL-friendly (stable field names, wire names fixed for UISchema).
- Strict where the pipeline owns the data (results, prompts, cache entries).
- Permissive where the model owns the data (UIComponent/UISchema keep extras).

Used by:
- extraction.py / validation.py (ExtractedBlock, ValidationResult)
- core.py (AttemptResult + RetryResult artifacts)
- prompts.py / cache.py (PromptSection, PromptBuildResult, CacheEntry)
- cli.py (to serialize attempt transcripts)
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from . import utils


DEFAULT_SCHEMA_VERSION = "1.0"


def _utc_now_iso() -> str:
    """Return current UTC timestamp as ISO8601 string with 'Z'."""
    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


# -------------------------
# Conversation
# -------------------------


class ChatMessage(BaseModel):
    """One chat turn. Frozen: edit history by creating new messages."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Literal["system", "user", "assistant"]
    content: str


# -------------------------
# Extraction
# -------------------------


class ExtractedBlock(BaseModel):
    """
    One fenced code block found in model output.

    start_index/end_index delimit the fence *body* in the source text,
    so `text[start_index:end_index] == content`.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    content: str
    format: Literal["json", "generic"]
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)


class JSONExtractionResult(BaseModel):
    """Outcome of extract_json(); never raised, always returned."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    reason: Literal["ok", "invalid_input", "no_blocks", "parse_failed"]
    json_text: Optional[str] = None
    parsed: Any = None
    block_index: Optional[int] = None
    error: Optional[str] = None


# -------------------------
# UI schema contract
# -------------------------


class UIComponent(BaseModel):
    """A node of the UI tree. Unknown keys (style, events, ...) are preserved."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    props: Optional[Dict[str, Any]] = None
    children: Optional[List[UIComponent]] = None
    text: Optional[str] = None

    def iter_components(self):
        """Depth-first, document-order walk of this subtree."""
        yield self
        for child in self.children or []:
            yield from child.iter_components()


class UISchema(BaseModel):
    """Versioned UI description recovered from model output."""

    model_config = ConfigDict(extra="allow")

    version: str = DEFAULT_SCHEMA_VERSION
    root: UIComponent
    data: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        """
        Dump as it arrived: fields absent from the input stay absent, while
        explicit nulls and extra keys (here and inside props/data) are kept.
        """
        wire = self.model_dump(mode="json", exclude_unset=True)
        wire.setdefault("version", self.version)
        return wire


# -------------------------
# Validation
# -------------------------


class ErrorCode(str, Enum):
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_TYPE = "INVALID_TYPE"
    INVALID_VALUE = "INVALID_VALUE"
    UNKNOWN_COMPONENT = "UNKNOWN_COMPONENT"
    # Attempt-level codes produced by the orchestrator, not the validator.
    PARSE_ERROR = "PARSE_ERROR"
    TIMEOUT = "TIMEOUT"
    GENERATION_FAILED = "GENERATION_FAILED"


class ValidationError(BaseModel):
    """
    One addressable problem.

    Fields:
      - path: dotted/bracket location, e.g. "root.children[1].id" ("" = whole document)
      - code: ErrorCode
      - message: human-readable description, fed back to the model verbatim
      - suggestion: optional hint ("Did you mean: Button?")
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    code: ErrorCode
    message: str
    suggestion: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        """Identity used to decide whether an error was fixed between attempts."""
        return (self.code.value, self.path)


class ValidationResult(BaseModel):
    """errors block acceptance; warnings never do."""

    model_config = ConfigDict(extra="forbid")

    errors: List[ValidationError] = Field(default_factory=list)
    warnings: List[ValidationError] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def valid(self) -> bool:
        return not self.errors

    @model_validator(mode="before")
    @classmethod
    def _drop_serialized_valid(cls, data: Any) -> Any:
        # `valid` is derived; accept dumps that carry it.
        if isinstance(data, dict) and "valid" in data:
            data = {k: v for k, v in data.items() if k != "valid"}
        return data


# -------------------------
# Retry artifacts
# -------------------------


class RetryState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    SUCCESS = "success"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class AttemptResult(BaseModel):
    """
    A single generate -> extract -> validate cycle.

    Fields:
      - attempt_index: 1-based
      - prompt: the exact prompt sent for this attempt
      - raw_response: model text ("" when generation timed out or failed)
      - candidate: the parsed JSON value that was validated (if any)
      - extracted: the typed schema when validation passed
      - validation: errors/warnings for this attempt
      - elapsed_ms: wall time of the attempt
      - state: what the orchestrator did after this attempt
    """

    model_config = ConfigDict(extra="forbid")

    attempt_index: int = Field(ge=1)
    prompt: str = ""
    raw_response: str = ""
    candidate: Any = None
    extracted: Optional[UISchema] = None
    validation: ValidationResult = Field(default_factory=ValidationResult)
    elapsed_ms: int = Field(ge=0, default=0)
    state: RetryState = RetryState.VALIDATING
    created_at: str = Field(default_factory=_utc_now_iso)

    @property
    def succeeded(self) -> bool:
        return self.validation.valid and self.extracted is not None


class RetryResult(BaseModel):
    """
    Final report of one orchestration run.

      - attempts: chronological AttemptResults
      - final_schema: set only when succeeded
      - fix_rate: diagnostic, None with fewer than two failing attempts
      - stopped_reason: why the loop ended
    """

    model_config = ConfigDict(extra="forbid")

    attempts: List[AttemptResult] = Field(default_factory=list)
    final_schema: Optional[UISchema] = None
    succeeded: bool = False
    fix_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    stopped_reason: Literal["success", "exhausted", "timeout", "cancelled"] = "exhausted"
    total_ms: int = Field(ge=0, default=0)

    started_at: str = Field(default_factory=_utc_now_iso)
    finished_at: str = Field(default_factory=_utc_now_iso)

    @model_validator(mode="after")
    def _schema_iff_success(self) -> RetryResult:
        if self.succeeded != (self.final_schema is not None):
            raise ValueError("final_schema must be set exactly when succeeded is True")
        return self

    @property
    def failing_attempts(self) -> List[AttemptResult]:
        return [a for a in self.attempts if not a.validation.valid]

    @property
    def best_attempt(self) -> Optional[AttemptResult]:
        """Attempt with the fewest errors among those that produced a candidate."""
        with_candidate = [a for a in self.attempts if a.candidate is not None]
        if not with_candidate:
            return None
        return min(with_candidate, key=lambda a: len(a.validation.errors))


class RetryProgressEvent(BaseModel):
    """Emitted to the optional progress callback on every state change."""

    model_config = ConfigDict(extra="forbid")

    attempt: int = Field(ge=0)
    max_attempts: int = Field(ge=1)
    state: RetryState
    errors_fixed: int = Field(ge=0, default=0)
    errors_remaining: int = Field(ge=0, default=0)


# -------------------------
# Prompts + cache
# -------------------------


class PromptSection(BaseModel):
    """
    An atomic piece of the instruction prompt.

    priority: lower values are trimmed first when over budget.
    estimated_tokens: filled from content when omitted.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    priority: int
    content: str
    estimated_tokens: int = Field(default=-1)

    @model_validator(mode="after")
    def _estimate(self) -> PromptSection:
        if self.estimated_tokens < 0:
            self.estimated_tokens = utils.rough_token_count(self.content)
        return self


class PromptBuildResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    text: str
    included_sections: List[str] = Field(default_factory=list)
    trimmed_sections: List[str] = Field(default_factory=list)
    total_tokens: int = Field(ge=0, default=0)
    token_budget: Optional[int] = None
    over_budget: bool = False


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str
    value: PromptBuildResult
    created_at: float
