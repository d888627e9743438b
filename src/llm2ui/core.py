# src/llm2ui/core.py
"""
Core orchestration for llm2ui.

Implements:
- RetryOrchestrator: generate -> extract -> validate, re-prompting with a fix
  prompt until the schema validates or a bound is hit
- UISchemaPipeline: config check + cached prompt build + orchestrator, bound
  to an LLM

Design goals:
- One run is a small explicit state machine (RetryState); every transition is
  logged and optionally reported through a progress callback.
- Bounded: max_attempts, a per-attempt timeout and a total timeout.
- Partial results: timeouts, transport errors and cancellation still return a
  RetryResult with the attempts made so far.

Notes:
- `generate(prompt, history)` is the only suspending step. It is raced against
  the timer and the cancellation token; the loser is cancelled.
- fix_rate is diagnostic only and never affects control flow.
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from .cache import PromptCache, make_cache_key
from .catalog import StaticCatalog
from .config import GenerationConfig, RetryConfig, Settings, load_generation_config
from .extraction import extract_candidate, with_default_version
from .llm import LLM, StreamingLLM, collect_stream
from .prompts import build_fix_prompt, build_initial_prompt
from .schemas import (
    AttemptResult,
    ChatMessage,
    ErrorCode,
    PromptBuildResult,
    RetryProgressEvent,
    RetryResult,
    RetryState,
    UISchema,
    ValidationError,
    ValidationResult,
    _utc_now_iso,
)
from .validation import SchemaValidator
from . import utils

logger = structlog.get_logger()

History = Tuple[ChatMessage, ...]
GenerateFn = Callable[[str, History], Union[str, Awaitable[str]]]
FixPromptBuilder = Callable[[str, str, Sequence[ValidationError]], str]
ProgressCallback = Callable[[RetryProgressEvent], None]


# -------------------------
# Cancellation
# -------------------------

class CancellationToken:
    """
    Cooperative cancellation for a run.

    `cancel()` must be called from the event loop thread; use
    `loop.call_soon_threadsafe(token.cancel)` from elsewhere. The waiting
    event is created per event loop, so one token can serve several
    `run_sync` calls; once cancelled it stays cancelled.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def cancel(self) -> None:
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        if self._event is None or self._loop is not loop:
            self._event = asyncio.Event()
            self._loop = loop
            if self._cancelled:
                self._event.set()
        await self._event.wait()


# -------------------------
# Error comparison + fix rate
# -------------------------

def compare_errors(
    previous: Sequence[ValidationError], current: Sequence[ValidationError]
) -> Tuple[List[ValidationError], List[ValidationError], List[ValidationError]]:
    """
    Split errors by identity (code, path) across two attempts.

    Returns (fixed, remaining, introduced):
      fixed: in previous, absent from current
      remaining: in both (current's copy)
      introduced: only in current
    """
    prev_keys = {e.key for e in previous}
    cur_keys = {e.key for e in current}
    fixed = [e for e in previous if e.key not in cur_keys]
    remaining = [e for e in current if e.key in prev_keys]
    introduced = [e for e in current if e.key not in prev_keys]
    return fixed, remaining, introduced


def compute_fix_rate(attempts: Sequence[AttemptResult]) -> Optional[float]:
    """
    Share of the first failure's error count that later retries fixed.

    Sums, over consecutive failing attempts, the errors of one attempt that
    are gone in the next, divided by the first failing attempt's error count.
    None with fewer than two failing attempts; clamped to [0, 1].
    """
    failing = [a for a in attempts if not a.validation.valid]
    if len(failing) < 2:
        return None
    baseline = len(failing[0].validation.errors)
    if baseline == 0:
        return None
    fixed = 0
    for prev, cur in zip(failing, failing[1:]):
        fixed += len(compare_errors(prev.validation.errors, cur.validation.errors)[0])
    return utils.clamp(fixed / baseline, 0.0, 1.0)


# -------------------------
# Helpers
# -------------------------

def _attempt_error(code: ErrorCode, message: str, suggestion: Optional[str] = None) -> ValidationResult:
    return ValidationResult(errors=[ValidationError(path="", code=code, message=message, suggestion=suggestion)])


async def _call_generate(
    generate: GenerateFn, prompt: str, history: History, executor: Optional[Executor] = None
) -> str:
    if inspect.iscoroutinefunction(generate) or inspect.iscoroutinefunction(getattr(generate, "__call__", None)):
        result = await generate(prompt, history)  # type: ignore[misc]
    else:
        # Blocking clients run off-loop so the timer and cancellation still win.
        loop = asyncio.get_running_loop()
        ctx = contextvars.copy_context()
        result = await loop.run_in_executor(executor, functools.partial(ctx.run, generate, prompt, history))
        if inspect.isawaitable(result):
            result = await result
    if not isinstance(result, str):
        raise TypeError(f"generate returned {type(result).__name__}, expected str")
    return result


async def _race(
    coro: Awaitable[str], timeout: float, cancel: Optional[CancellationToken]
) -> Tuple[str, Any]:
    """
    Run `coro` against a timer and the cancellation token.

    Returns one of ("ok", text), ("error", exc), ("timeout", None), ("cancelled", None).
    """
    task = asyncio.ensure_future(coro)
    waiters = {task}
    cancel_waiter: Optional[asyncio.Future] = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task in done:
        exc = task.exception()
        return ("error", exc) if exc is not None else ("ok", task.result())
    if cancel is not None and cancel.cancelled:
        return ("cancelled", None)
    return ("timeout", None)


# -------------------------
# Orchestrator
# -------------------------

class RetryOrchestrator:
    """
    Drive generate/validate cycles for one prompt.

    Args:
      validator: SchemaValidator (no catalog by default).
      fix_prompt_builder: (task, previous_output, errors) -> corrective prompt.
      on_progress: called with a RetryProgressEvent on every state change.
      executor: where blocking generate callables run (default: the loop's
        default executor).
    """

    def __init__(
        self,
        validator: Optional[SchemaValidator] = None,
        fix_prompt_builder: FixPromptBuilder = build_fix_prompt,
        on_progress: Optional[ProgressCallback] = None,
        executor: Optional[Executor] = None,
    ):
        self.validator = validator or SchemaValidator()
        self.fix_prompt_builder = fix_prompt_builder
        self.on_progress = on_progress
        self.executor = executor

    def _emit(
        self,
        attempt: int,
        config: RetryConfig,
        state: RetryState,
        errors_fixed: int = 0,
        errors_remaining: int = 0,
    ) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            RetryProgressEvent(
                attempt=attempt,
                max_attempts=config.max_attempts,
                state=state,
                errors_fixed=errors_fixed,
                errors_remaining=errors_remaining,
            )
        )

    def evaluate(self, raw: str) -> Tuple[Any, Optional[UISchema], ValidationResult]:
        """Extract + validate one response. Returns (candidate, schema, validation)."""
        extraction = extract_candidate(raw)
        if not extraction.success:
            return None, None, _attempt_error(
                ErrorCode.PARSE_ERROR,
                extraction.error or "no JSON found",
                "Return the complete UISchema inside a single ```json code block",
            )

        candidate = extraction.parsed
        if isinstance(candidate, dict):
            candidate = with_default_version(candidate)
        validation = self.validator.validate(candidate)
        if not validation.valid:
            return candidate, None, validation

        try:
            schema = UISchema.model_validate(candidate)
        except PydanticValidationError as e:
            return candidate, None, _attempt_error(ErrorCode.INVALID_VALUE, f"Schema rejected: {e.errors()[0]['msg']}")
        return candidate, schema, validation

    async def run(
        self,
        initial_prompt: str,
        generate: GenerateFn,
        config: Optional[RetryConfig] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> RetryResult:
        config = config or RetryConfig()
        loop = asyncio.get_running_loop()
        started_at = _utc_now_iso()
        t0 = loop.time()
        deadline = t0 + config.total_timeout

        attempts: List[AttemptResult] = []
        history: List[ChatMessage] = []
        prompt = initial_prompt
        final_schema: Optional[UISchema] = None
        stopped_reason = "exhausted"
        previous_errors: Optional[List[ValidationError]] = None

        self._emit(0, config, RetryState.IDLE)

        for index in range(1, config.max_attempts + 1):
            if cancel is not None and cancel.cancelled:
                stopped_reason = "cancelled"
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                stopped_reason = "timeout"
                break

            log = logger.bind(attempt=index, max_attempts=config.max_attempts)
            self._emit(index, config, RetryState.GENERATING)
            log.info("attempt_started", timeout=round(min(config.per_attempt_timeout, remaining), 3))

            attempt_t0 = loop.time()
            outcome, value = await _race(
                _call_generate(generate, prompt, tuple(history), self.executor),
                min(config.per_attempt_timeout, remaining),
                cancel,
            )
            if outcome == "cancelled":
                log.info("attempt_cancelled")
                stopped_reason = "cancelled"
                break

            raw = ""
            candidate: Any = None
            schema: Optional[UISchema] = None
            if outcome == "timeout":
                log.warning("attempt_timed_out")
                validation = _attempt_error(
                    ErrorCode.TIMEOUT,
                    f"Generation did not finish within {min(config.per_attempt_timeout, remaining):.1f}s",
                    "Return a shorter, complete UISchema",
                )
            elif outcome == "error":
                log.warning("generation_failed", error=str(value), error_type=type(value).__name__)
                validation = _attempt_error(ErrorCode.GENERATION_FAILED, f"Generation failed: {value}")
            else:
                raw = value
                self._emit(index, config, RetryState.EXTRACTING)
                self._emit(index, config, RetryState.VALIDATING)
                candidate, schema, validation = self.evaluate(raw)

            attempt = AttemptResult(
                attempt_index=index,
                prompt=prompt,
                raw_response=raw,
                candidate=candidate,
                extracted=schema,
                validation=validation,
                elapsed_ms=int((loop.time() - attempt_t0) * 1000),
            )
            history.extend([ChatMessage(role="user", content=prompt), ChatMessage(role="assistant", content=raw)])

            if schema is not None:
                attempt.state = RetryState.SUCCESS
                attempts.append(attempt)
                final_schema = schema
                stopped_reason = "success"
                log.info("attempt_succeeded", warnings=len(validation.warnings))
                self._emit(index, config, RetryState.SUCCESS)
                break

            fixed = 0
            if previous_errors is not None:
                fixed = len(compare_errors(previous_errors, validation.errors)[0])
            previous_errors = list(validation.errors)
            log.info(
                "attempt_failed",
                errors=len(validation.errors),
                fixed=fixed,
                codes=sorted({e.code.value for e in validation.errors}),
            )

            out_of_attempts = index >= config.max_attempts
            out_of_time = loop.time() >= deadline
            if out_of_attempts or out_of_time:
                attempt.state = RetryState.EXHAUSTED if out_of_attempts else RetryState.TIMED_OUT
                attempts.append(attempt)
                stopped_reason = "exhausted" if out_of_attempts else "timeout"
                self._emit(index, config, attempt.state, fixed, len(validation.errors))
                break

            attempt.state = RetryState.RETRYING
            attempts.append(attempt)
            self._emit(index, config, RetryState.RETRYING, fixed, len(validation.errors))
            prompt = self.fix_prompt_builder(initial_prompt, raw, validation.errors)

        if stopped_reason == "cancelled":
            self._emit(len(attempts), config, RetryState.CANCELLED)
        elif stopped_reason == "timeout" and (not attempts or attempts[-1].state != RetryState.TIMED_OUT):
            self._emit(len(attempts), config, RetryState.TIMED_OUT)

        fix_rate = compute_fix_rate(attempts)
        total_ms = int((loop.time() - t0) * 1000)
        logger.info(
            "retry_finished",
            stopped_reason=stopped_reason,
            attempts=len(attempts),
            fix_rate=fix_rate,
            total_ms=total_ms,
        )
        return RetryResult(
            attempts=attempts,
            final_schema=final_schema,
            succeeded=final_schema is not None,
            fix_rate=fix_rate,
            stopped_reason=stopped_reason,  # type: ignore[arg-type]
            total_ms=total_ms,
            started_at=started_at,
            finished_at=_utc_now_iso(),
        )


# -------------------------
# Pipeline facade
# -------------------------

def _jsonable_examples(examples: Sequence[Any]) -> List[Any]:
    return [e.to_wire() if isinstance(e, UISchema) else e for e in examples]


class UISchemaPipeline:
    """
    End-to-end: task text in, RetryResult out.

    The generation config is checked at construction, so a bad config
    raises ConfigurationError before any generate call.

    Providers that only stream (no `generate`), or any StreamingLLM when
    `prefer_stream=True`, are driven through `stream()` and collected into
    one response per attempt.
    """

    def __init__(
        self,
        llm: Union[LLM, StreamingLLM],
        generation_config: Union[GenerationConfig, Mapping[str, Any]],
        *,
        catalog: Optional[StaticCatalog] = None,
        cache: Optional[PromptCache] = None,
        retry_config: Optional[RetryConfig] = None,
        settings: Optional[Settings] = None,
        strict_types: bool = True,
        include_history: bool = False,
        prefer_stream: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.settings = settings or Settings()
        self.generation_config = load_generation_config(generation_config)
        self.llm = llm
        self.catalog = catalog
        # An empty cache is falsy (__len__), so test for None explicitly.
        self.cache = cache if cache is not None else PromptCache(
            max_size=self.settings.cache_max_size,
            ttl_seconds=self.settings.cache_ttl_seconds,
        )
        self.retry_config = retry_config or self.settings.retry_config()
        self.validator = SchemaValidator(catalog, strict_types=strict_types)
        self.include_history = include_history
        self.prefer_stream = prefer_stream
        self.on_progress = on_progress

    def build_prompt(
        self,
        task: str,
        *,
        language: str,
        token_budget: Optional[int],
        examples: Sequence[Any] = (),
        design_tokens: Optional[Mapping[str, Any]] = None,
    ) -> PromptBuildResult:
        key = make_cache_key(
            task=task,
            catalog_version=getattr(self.catalog, "version", None),
            token_budget=token_budget,
            language=language,
            extra={"examples": _jsonable_examples(examples), "design_tokens": dict(design_tokens or {})},
        )
        return self.cache.get_or_build(
            key,
            lambda: build_initial_prompt(
                task,
                catalog=self.catalog,
                language=language,
                token_budget=token_budget,
                examples=examples,
                design_tokens=design_tokens,
            ),
        )

    def _uses_stream(self) -> bool:
        has_generate = callable(getattr(self.llm, "generate", None))
        if self.prefer_stream or not has_generate:
            if not isinstance(self.llm, StreamingLLM):
                raise TypeError(f"{type(self.llm).__name__} has neither generate() nor stream()")
            return True
        return False

    def _bind_generate(self) -> GenerateFn:
        llm = self.llm
        config = self.generation_config
        include_history = self.include_history

        def messages_for(prompt: str, history: History) -> List[ChatMessage]:
            user = ChatMessage(role="user", content=prompt)
            return [*history, user] if include_history else [user]

        if self._uses_stream():
            async def generate_streamed(prompt: str, history: History) -> str:
                return await collect_stream(llm.stream(messages_for(prompt, history), config))  # type: ignore[union-attr]
            return generate_streamed

        if inspect.iscoroutinefunction(llm.generate):  # type: ignore[union-attr]
            async def generate(prompt: str, history: History) -> str:
                return await llm.generate(messages_for(prompt, history), config)  # type: ignore[union-attr]
            return generate

        def generate_blocking(prompt: str, history: History) -> str:
            return llm.generate(messages_for(prompt, history), config)  # type: ignore[union-attr,return-value]
        return generate_blocking

    async def generate_ui(
        self,
        task: str,
        *,
        language: Optional[str] = None,
        token_budget: Optional[int] = None,
        examples: Sequence[Any] = (),
        design_tokens: Optional[Mapping[str, Any]] = None,
        cancel: Optional[CancellationToken] = None,
        retry_config: Optional[RetryConfig] = None,
        executor: Optional[Executor] = None,
    ) -> RetryResult:
        language = language or self.settings.language
        if token_budget is None:
            token_budget = self.settings.token_budget

        with structlog.contextvars.bound_contextvars(run_id=uuid.uuid4().hex[:8], task_hash=utils.stable_hash(task)[:12]):
            prompt = self.build_prompt(
                task,
                language=language,
                token_budget=token_budget,
                examples=examples,
                design_tokens=design_tokens,
            )
            if prompt.over_budget:
                logger.warning("prompt_over_budget", total_tokens=prompt.total_tokens, token_budget=token_budget)
            elif prompt.trimmed_sections:
                logger.info("prompt_trimmed", trimmed=prompt.trimmed_sections, total_tokens=prompt.total_tokens)

            orchestrator = RetryOrchestrator(
                validator=self.validator,
                fix_prompt_builder=functools.partial(
                    build_fix_prompt,
                    language=language,
                    max_output_chars=self.settings.fix_prompt_max_output_chars,
                ),
                on_progress=self.on_progress,
                executor=executor,
            )
            return await orchestrator.run(
                prompt.text,
                self._bind_generate(),
                retry_config or self.retry_config,
                cancel,
            )

    def run_sync(self, task: str, **kwargs: Any) -> RetryResult:
        """
        asyncio.run wrapper for scripts and the CLI.

        Blocking providers run on a pool owned by this call. The pool is shut
        down without waiting, so a provider thread that never returns cannot
        hold the caller past the run's timeouts.
        """
        retry_config = kwargs.get("retry_config") or self.retry_config
        executor = ThreadPoolExecutor(max_workers=retry_config.max_attempts, thread_name_prefix="llm2ui-generate")
        try:
            return asyncio.run(self.generate_ui(task, executor=executor, **kwargs))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
