# src/llm2ui/utils.py
"""
Utilities for llm2ui:
- Rough token estimates (dependency-free, CJK-aware).
- Truncation for long text embedded in prompts.
- Basic sanitization of model output before it is echoed back.
- Stable hashing for cache keys.

Deliberately simple and opinionated. This is glue, not a tokenizer.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
from typing import Any, Dict, Tuple


# -------------------------
# Token-ish estimation
# -------------------------

AVG_CHARS_PER_TOKEN = 4  # rough heuristic for English prose
CJK_CHARS_PER_TOKEN = 1.5
TRUNCATION_MARKER = " …[truncated]"

_CJK_RANGES = (
    (0x4E00, 0x9FFF),  # CJK Unified Ideographs
    (0x3400, 0x4DBF),  # Extension A
    (0xF900, 0xFAFF),  # Compatibility Ideographs
)


def _is_cjk(ch: str) -> bool:
    code = ord(ch)
    return any(lo <= code <= hi for lo, hi in _CJK_RANGES)


def _is_latin_alnum(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


def token_breakdown(text: str) -> Dict[str, int]:
    """
    Per-script token estimate: {"latin": .., "cjk": .., "other": .., "total": ..}.

    Each bucket is ceil(chars / ratio), so adding characters never lowers
    any bucket and the total is monotonic in the text.
    """
    latin = cjk = other = 0
    for ch in text or "":
        if _is_cjk(ch):
            cjk += 1
        elif _is_latin_alnum(ch):
            latin += 1
        else:
            other += 1
    out = {
        "latin": math.ceil(latin / AVG_CHARS_PER_TOKEN),
        "cjk": math.ceil(cjk / CJK_CHARS_PER_TOKEN),
        "other": math.ceil(other / AVG_CHARS_PER_TOKEN),
    }
    out["total"] = out["latin"] + out["cjk"] + out["other"]
    return out


def rough_token_count(text: str) -> int:
    """
    Extremely rough token estimate with no external deps.

    Heuristic:
      latin alnum ~ 4 chars/token, CJK ideographs ~ 1.5 chars/token,
      everything else (spaces, punctuation, braces) ~ 4 chars/token.

    Good enough for budget trimming; deterministic for the same input.

    >>> rough_token_count("hello world")
    4
    """
    if not text:
        return 0
    return token_breakdown(text)["total"]


# -------------------------
# Truncation
# -------------------------

def truncate_text(text: str, max_chars: int) -> Tuple[str, bool]:
    """
    Hard cut `text` to `max_chars`, appending a marker when cut.

    Returns (text, was_truncated).
    """
    if max_chars <= 0:
        return "", bool(text)
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars].rstrip() + TRUNCATION_MARKER, True


# -------------------------
# Sanitization
# -------------------------

_NONPRINTABLE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_MULTILINE = re.compile(r"\n{3,}")


def sanitize_text(text: str) -> str:
    """
    Minimal sanitization of model output before echoing it into a prompt:
      - Strip control chars (except \\n and \\t).
      - Collapse runs of blank lines.
      - Normalize runaway code fences to three backticks.

    Indentation inside lines is left alone; it may be inside JSON strings.
    """
    if not text:
        return ""

    t = _NONPRINTABLE.sub("", text)
    t = _MULTILINE.sub("\n\n", t)
    t = re.sub(r"`{4,}", "```", t)
    return t.strip()


# -------------------------
# Hashing
# -------------------------

def canonical_json(value: Any) -> str:
    """JSON with sorted keys and no whitespace; stable across runs."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def stable_hash(value: Any) -> str:
    """sha256 hex digest of canonical_json(value)."""
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


# -------------------------
# Small helpers
# -------------------------

def clamp(n: float, low: float, high: float) -> float:
    """Clamp n into [low, high]."""
    return max(low, min(high, n))
