#!/usr/bin/env python3
"""
run_eval.py — lightweight evaluation harness for llm2ui

Runs the pipeline with LocalMock over task files and writes one transcript
per task plus a fix-rate report.

Usage:
    python evals/run_eval.py --tasks examples/tasks
    python evals/run_eval.py --tasks examples/tasks/login_form.md --flaky
"""

import argparse
import json
from pathlib import Path
from typing import Dict, List

from llm2ui.catalog import default_catalog
from llm2ui.cli import MOCK_CONFIG
from llm2ui.config import RetryConfig
from llm2ui.core import UISchemaPipeline
from llm2ui.llm import LocalMock
from llm2ui.logging_config import configure_logging


def load_tasks(path: Path) -> List[Path]:
    if path.is_dir():
        return sorted(path.glob("*.md"))
    return [path]


def save_transcript(lines, out_path: Path):
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as f:
        for line in lines:
            f.write(json.dumps(line, ensure_ascii=False) + "\n")


def run_eval(task_path: Path, out_dir: Path, flaky: bool, max_attempts: int) -> Dict:
    task_text = task_path.read_text(encoding="utf-8").strip()
    pipeline = UISchemaPipeline(
        LocalMock(flaky=flaky),
        MOCK_CONFIG,
        catalog=default_catalog(),
        retry_config=RetryConfig(max_attempts=max_attempts, per_attempt_timeout=5.0, total_timeout=30.0),
    )
    result = pipeline.run_sync(task_text, language="zh" if task_path.stem.endswith("_zh") else "en")

    out_file = out_dir / f"{task_path.stem}.jsonl"
    save_transcript([a.model_dump(mode="json") for a in result.attempts], out_file)

    return {
        "task": task_path.name,
        "succeeded": result.succeeded,
        "attempts": len(result.attempts),
        "stopped_reason": result.stopped_reason,
        "fix_rate": result.fix_rate,
        "failed_attempts": len(result.failing_attempts),
        "first_attempt_errors": len(result.attempts[0].validation.errors) if result.attempts else None,
        "transcript": str(out_file),
    }


def main():
    parser = argparse.ArgumentParser(description="Run llm2ui eval over task files")
    parser.add_argument("--tasks", default="examples/tasks", type=Path, help="Task .md file or directory")
    parser.add_argument(
        "--out", default="examples/transcripts", type=Path, help="Directory for transcript output"
    )
    parser.add_argument("--flaky", action="store_true", help="Make the mock fail its first attempt")
    parser.add_argument("--max-attempts", type=int, default=3)
    args = parser.parse_args()

    configure_logging(log_level="WARNING")
    rows = [run_eval(p, args.out, args.flaky, args.max_attempts) for p in load_tasks(args.tasks)]

    succeeded = sum(1 for r in rows if r["succeeded"])
    rates = [r["fix_rate"] for r in rows if r["fix_rate"] is not None]
    report = {
        "tasks": rows,
        "success_rate": succeeded / len(rows) if rows else 0.0,
        "mean_attempts": sum(r["attempts"] for r in rows) / len(rows) if rows else 0.0,
        "mean_fix_rate": sum(rates) / len(rates) if rates else None,
    }
    report_path = args.out / "report.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, ensure_ascii=False, indent=2), encoding="utf-8")

    for r in rows:
        print(f"[{'OK' if r['succeeded'] else 'FAIL'}] {r['task']}: attempts={r['attempts']} stopped={r['stopped_reason']}")
    print(f"[OK] Saved report to {report_path}")


if __name__ == "__main__":
    main()
