# src/llm2ui/cli.py
"""
CLI entrypoint for llm2ui.

Example:
    python -m llm2ui --task examples/tasks/login_form.md --mock --save runs/login.jsonl
"""

import argparse
import json
import os
import sys
from pathlib import Path

import structlog

from llm2ui.catalog import default_catalog
from llm2ui.config import ConfigurationError, GenerationConfig, Settings
from llm2ui.core import UISchemaPipeline
from llm2ui.llm import LocalMock, create_llm
from llm2ui.logging_config import configure_logging

logger = structlog.get_logger()

# LocalMock needs no credentials; this keeps the config check meaningful.
MOCK_CONFIG = GenerationConfig(provider="custom", api_key="mock", model="local-mock", endpoint="local://mock")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate a validated UI schema for a task file.")
    parser.add_argument("--task", type=str, required=True, help="Path to task file (Markdown or text).")
    parser.add_argument("--mock", action="store_true", help="Use LocalMock instead of a real model.")
    parser.add_argument("--flaky", action="store_true", help="LocalMock returns an invalid schema first (exercises retries).")
    parser.add_argument("--max-attempts", type=int, help="Upper bound on generate/validate cycles.")
    parser.add_argument("--per-attempt-timeout", type=float, help="Seconds allowed for one generate call.")
    parser.add_argument("--total-timeout", type=float, help="Seconds allowed for the whole run.")
    parser.add_argument("--budget", type=int, help="Token budget for the initial prompt.")
    parser.add_argument("--language", choices=["en", "zh"], help="Prompt language.")
    parser.add_argument("--save", type=str, help="Path to save the attempt transcript (JSONL).")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines on stderr.")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_logging(json_logs=args.json_logs or settings.json_logs, log_level=settings.log_level)

    task_path = Path(args.task)
    if not task_path.exists():
        sys.stderr.write(f"Task file not found: {task_path}\n")
        return 1
    task_text = task_path.read_text(encoding="utf-8").strip()

    # Model selection
    if args.mock or os.environ.get("LLM2UI_FORCE_MOCK") == "1" or os.environ.get("NO_NETWORK") == "1":
        llm = LocalMock(flaky=args.flaky)
        generation_config = MOCK_CONFIG
    else:
        try:
            generation_config = settings.generation_config()
        except ConfigurationError as e:
            sys.stderr.write(f"{e}\nSet LLM2UI_API_KEY / LLM2UI_MODEL or use --mock for a local run.\n")
            return 1
        llm = create_llm(generation_config)

    overrides = {
        k: v
        for k, v in {
            "max_attempts": args.max_attempts,
            "per_attempt_timeout": args.per_attempt_timeout,
            "total_timeout": args.total_timeout,
        }.items()
        if v is not None
    }

    pipeline = UISchemaPipeline(
        llm,
        generation_config,
        catalog=default_catalog(),
        retry_config=settings.retry_config(**overrides),
        settings=settings,
    )
    result = pipeline.run_sync(task_text, language=args.language, token_budget=args.budget)

    # Output to stdout
    print("\n=== FINAL SCHEMA ===\n")
    if result.final_schema is not None:
        print(json.dumps(result.final_schema.to_wire(), ensure_ascii=False, indent=2))
    else:
        best = result.best_attempt
        print("(no valid schema)")
        if best is not None:
            print("\nRemaining errors of the best attempt:")
            for err in best.validation.errors:
                print(f"- [{err.code.value}] {err.path or '<document>'}: {err.message}")
    print("\n=== SUMMARY ===")
    if result.final_schema is not None:
        print(f"Components: {sum(1 for _ in result.final_schema.root.iter_components())}")
    print(f"Attempts: {len(result.attempts)}")
    print(f"Failed attempts: {len(result.failing_attempts)}")
    print(f"Stopped: {result.stopped_reason}")
    print(f"Fix rate: {'n/a' if result.fix_rate is None else f'{result.fix_rate:.2f}'}")

    # Save transcript if requested
    if args.save:
        save_path = Path(args.save)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        with save_path.open("w", encoding="utf-8") as f:
            for attempt in result.attempts:
                f.write(json.dumps(attempt.model_dump(mode="json"), ensure_ascii=False) + "\n")
        logger.info("transcript_saved", path=str(save_path), attempts=len(result.attempts))

    return 0 if result.succeeded else 2


if __name__ == "__main__":
    sys.exit(main())
