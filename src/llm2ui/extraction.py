# src/llm2ui/extraction.py
"""
Pull JSON candidates out of free-form model output.

Only fenced blocks are considered, in two passes over the same fence scan:
1) blocks tagged ```json
2) if none: untagged blocks whose body starts with '{' or '['
Nothing outside fences is ever guessed at.

All functions are pure and never raise for malformed model output.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import structlog

from .schemas import DEFAULT_SCHEMA_VERSION, ExtractedBlock, JSONExtractionResult

logger = structlog.get_logger()

FENCE = "```"
_TAG_CHARS = frozenset("_+-.")


# -------------------------
# Fence scanning
# -------------------------


@dataclass(frozen=True)
class _Fence:
    tag: str
    body_start: int
    body_end: int


def _find_close(text: str, body_start: int, inline: bool) -> int:
    """
    Index of the closing fence for a body starting at `body_start`, or -1.

    A closing fence starts a line (after optional indentation) or ends one
    (only whitespace after it). Backticks in the middle of a line, such as a
    code sample inside a JSON string, do not close the block. A body that
    began on the fence line may also close anywhere on that same line.
    """
    n = len(text)
    line_start = body_start
    while line_start <= n:
        line_end = text.find("\n", line_start)
        if line_end == -1:
            line_end = n
        line = text[line_start:line_end]

        if inline and line_start == body_start:
            hit = line.find(FENCE)
            if hit != -1:
                return line_start + hit

        stripped = line.lstrip(" \t")
        if stripped.startswith(FENCE):
            return line_start + len(line) - len(stripped)
        trailing = line.rstrip(" \t\r")
        if trailing.endswith(FENCE):
            at = len(trailing) - len(FENCE)
            while at > 0 and trailing[at - 1] == "`":
                at -= 1
            return line_start + at

        line_start = line_end + 1
    return -1


def _iter_fences(text: str) -> Iterator[_Fence]:
    """
    Yield every terminated fenced block in appearance order.

    Opening fence: a run of 3+ backticks, an optional info tag, then either a
    newline (body starts on the next line) or the body itself on the same line.
    Closing fence: see _find_close. Unterminated fences yield nothing.
    """
    n = len(text)
    pos = 0
    while True:
        open_at = text.find(FENCE, pos)
        if open_at == -1:
            return

        i = open_at
        while i < n and text[i] == "`":
            i += 1
        tag_start = i
        while i < n and (text[i].isalnum() or text[i] in _TAG_CHARS):
            i += 1
        tag = text[tag_start:i]

        j = i
        while j < n and text[j] in " \t\r":
            j += 1
        inline = False
        if j < n and text[j] == "\n":
            body_start = j + 1
        elif j < n and text[j] not in "{[":
            # Info string carries attributes ("```json title=x"); body is on the next line.
            newline = text.find("\n", j)
            body_start = n if newline == -1 else newline + 1
        else:
            body_start = j
            inline = True

        close_at = _find_close(text, body_start, inline)
        if close_at == -1:
            return
        yield _Fence(tag=tag, body_start=body_start, body_end=close_at)

        k = close_at
        while k < n and text[k] == "`":
            k += 1
        pos = k


def _looks_like_json(body: str) -> bool:
    stripped = body.strip()
    return stripped.startswith("{") or stripped.startswith("[")


def extract_blocks(text: str) -> List[ExtractedBlock]:
    """
    Return candidate JSON blocks in the order they appear in `text`.

    Tagged ```json blocks win; generic fences are only consulted when no
    tagged block exists. Empty or non-string input yields [].
    """
    if not text or not isinstance(text, str):
        return []

    fences = list(_iter_fences(text))

    tagged = [
        ExtractedBlock(
            content=text[f.body_start:f.body_end],
            format="json",
            start_index=f.body_start,
            end_index=f.body_end,
        )
        for f in fences
        if f.tag.lower() == "json" and text[f.body_start:f.body_end].strip()
    ]
    if tagged:
        return tagged

    return [
        ExtractedBlock(
            content=text[f.body_start:f.body_end],
            format="generic",
            start_index=f.body_start,
            end_index=f.body_end,
        )
        for f in fences
        if not f.tag and _looks_like_json(text[f.body_start:f.body_end])
    ]


# -------------------------
# Parsing helpers
# -------------------------


def extract_json(text: str) -> JSONExtractionResult:
    """
    Parse blocks in order and return the first one that is valid JSON.

    Failure reasons:
      - invalid_input: empty / non-string text
      - no_blocks: no fenced JSON candidates at all
      - parse_failed: candidates exist but none parse (message lists each block)
    """
    if not text or not isinstance(text, str):
        return JSONExtractionResult(
            success=False, reason="invalid_input", error="invalid input: text is required"
        )

    blocks = extract_blocks(text)
    if not blocks:
        return JSONExtractionResult(success=False, reason="no_blocks", error="no JSON blocks found")

    failures: List[str] = []
    for i, block in enumerate(blocks):
        try:
            parsed = json.loads(block.content)
        except json.JSONDecodeError as e:
            failures.append(f"failed to parse block {i}: {e.msg} (line {e.lineno}, column {e.colno})")
            continue
        return JSONExtractionResult(
            success=True, reason="ok", json_text=block.content, parsed=parsed, block_index=i
        )

    logger.debug("json_blocks_unparseable", blocks=len(blocks))
    return JSONExtractionResult(success=False, reason="parse_failed", error="; ".join(failures))


def extract_all_json(text: str) -> List[Any]:
    """Every block that parses, in order; unparseable blocks are skipped."""
    results: List[Any] = []
    for block in extract_blocks(text):
        try:
            results.append(json.loads(block.content))
        except json.JSONDecodeError:
            continue
    return results


def extract_candidate(text: str) -> JSONExtractionResult:
    """
    Like extract_json, but prefers the first block that parses to a JSON object.

    Falls back to the first parseable block of any shape so the validator can
    report a precise INVALID_TYPE instead of a parse failure.
    """
    first = extract_json(text)
    if not first.success or isinstance(first.parsed, dict):
        return first

    for i, block in enumerate(extract_blocks(text)):
        if first.block_index is not None and i <= first.block_index:
            continue
        try:
            parsed = json.loads(block.content)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return JSONExtractionResult(
                success=True, reason="ok", json_text=block.content, parsed=parsed, block_index=i
            )
    return first


def _has_minimal_root(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    root = value.get("root")
    return isinstance(root, dict) and "id" in root and "type" in root


def with_default_version(value: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of `value` with version defaulted to "1.0" when absent."""
    out = copy.deepcopy(value)
    out.setdefault("version", DEFAULT_SCHEMA_VERSION)
    return out


def extract_ui_schema(text: str) -> Optional[Dict[str, Any]]:
    """
    First parsed block with root.id and root.type present, version defaulted.

    This is a minimal structural filter, not validation; run the result
    through validation.validate() before trusting it.
    """
    for value in extract_all_json(text):
        if _has_minimal_root(value):
            return with_default_version(value)
    return None
