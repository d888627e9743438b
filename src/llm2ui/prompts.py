# src/llm2ui/prompts.py
"""
Prompt construction for UI generation.

Implements:
- optimize_sections / PromptOptimizer: fit atomic sections under a token budget
- PromptBuilder: fluent assembly of the standard sections (intro, format rules,
  component docs, examples, design tokens, task)
- build_fix_prompt: corrective prompt after a failed attempt

Notes:
- Sections are never partially truncated. Few-shot examples and component
  docs either go in whole or not at all.
- Lower priority is dropped first; the single highest-priority section always
  survives, even when it alone exceeds the budget (reported via over_budget).
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .catalog import StaticCatalog
from .schemas import PromptBuildResult, PromptSection, UISchema, ValidationError
from . import utils


# -------------------------
# Defaults
# -------------------------

# Higher = kept longer.
DEFAULT_PRIORITIES: Dict[str, int] = {
    "task": 10,
    "system-intro": 9,
    "output-format": 8,
    "component-docs": 6,
    "design-tokens": 4,
    "examples": 3,
}
CUSTOM_SECTION_PRIORITY = 5

_TEMPLATES: Dict[str, Dict[str, str]] = {
    "en": {
        "system-intro": (
            "You are a UI generator. Convert the user's request into a UISchema: "
            "a JSON description of a component tree that a renderer turns into a working interface."
        ),
        "output-format": (
            "## Output format\n"
            "Respond with exactly one ```json code block containing the UISchema and nothing else inside it.\n"
            "- Top level: {\"version\": \"1.0\", \"root\": <component>, \"data\": {...optional}}\n"
            "- Component: {\"id\": string, \"type\": string, \"props\": {...}, \"children\": [<component>...], \"text\": string}\n"
            "- `id` and `type` are required on every component; ids are unique within the tree.\n"
            "- `children` is always an array; use `text` for literal text content."
        ),
        "component-docs": "## Available components\nUse only these component types.\n\n{docs}",
        "examples": "## Examples\n{examples}",
        "design-tokens": "## Design tokens\nPrefer these tokens over raw values:\n{tokens}",
        "task": "## Request\n{task}\n\nRespond with the UISchema only.",
        "fix-marker": "## Previous attempt was invalid",
        "fix-intro": (
            "Your previous output did not pass validation. Fix every error listed below and "
            "return the complete corrected UISchema as a single ```json block."
        ),
        "fix-output": "### Previous output",
        "fix-errors": "### Errors",
        "no-output": "(no output)",
    },
    "zh": {
        "system-intro": "你是一个 UI 生成器。请将用户的需求转换为 UISchema：一个描述组件树的 JSON，渲染器会把它变成可用的界面。",
        "output-format": (
            "## 输出格式\n"
            "只输出一个 ```json 代码块，内容为 UISchema。\n"
            "- 顶层：{\"version\": \"1.0\", \"root\": <组件>, \"data\": {...可选}}\n"
            "- 组件：{\"id\": 字符串, \"type\": 字符串, \"props\": {...}, \"children\": [<组件>...], \"text\": 字符串}\n"
            "- 每个组件都必须有 `id` 和 `type`，id 在整棵树中唯一。\n"
            "- `children` 必须是数组；纯文本内容放在 `text` 中。"
        ),
        "component-docs": "## 可用组件\n只能使用以下组件类型。\n\n{docs}",
        "examples": "## 示例\n{examples}",
        "design-tokens": "## 设计令牌\n优先使用以下令牌而不是原始值：\n{tokens}",
        "task": "## 需求\n{task}\n\n只输出 UISchema。",
        "fix-marker": "## 上一次输出无效",
        "fix-intro": "上一次的输出没有通过校验。请修复下面列出的所有错误，并以单个 ```json 代码块返回完整的 UISchema。",
        "fix-output": "### 上一次输出",
        "fix-errors": "### 错误",
        "no-output": "（无输出）",
    },
}

SUPPORTED_LANGUAGES = tuple(_TEMPLATES)


def _template(name: str, language: str) -> str:
    table = _TEMPLATES.get(language)
    if table is None:
        raise ValueError(f"Unsupported language: {language!r} (expected one of {SUPPORTED_LANGUAGES})")
    return table[name]


# -------------------------
# Optimizer
# -------------------------

def optimize_sections(sections: Sequence[PromptSection], token_budget: Optional[int]) -> PromptBuildResult:
    """
    Keep sections in their original order, dropping the lowest-priority ones
    (ties: the later section first) until the estimated total fits the budget.

    `token_budget=None` means unlimited.
    """
    sections = list(sections)
    total = sum(s.estimated_tokens for s in sections)
    dropped: set = set()
    trimmed: List[str] = []

    if token_budget is not None and sections:
        drop_order = sorted(range(len(sections)), key=lambda i: (sections[i].priority, -i))
        # The last index in drop_order is the most important section; it is never dropped.
        for i in drop_order[:-1]:
            if total <= token_budget:
                break
            dropped.add(i)
            total -= sections[i].estimated_tokens
            trimmed.append(sections[i].name)

    kept = [s for i, s in enumerate(sections) if i not in dropped]
    return PromptBuildResult(
        text="\n\n".join(s.content for s in kept if s.content),
        included_sections=[s.name for s in kept],
        trimmed_sections=trimmed,
        total_tokens=total,
        token_budget=token_budget,
        over_budget=token_budget is not None and total > token_budget,
    )


class PromptOptimizer:
    """
    Thin object wrapper over optimize_sections.

    `estimator` re-estimates section sizes (any monotonic heuristic works);
    defaults to utils.rough_token_count.
    """

    def __init__(self, estimator: Callable[[str], int] = utils.rough_token_count):
        self.estimator = estimator

    def _estimated(self, sections: Iterable[PromptSection]) -> List[PromptSection]:
        return [s.model_copy(update={"estimated_tokens": self.estimator(s.content)}) for s in sections]

    def optimize(self, sections: Sequence[PromptSection], token_budget: Optional[int]) -> PromptBuildResult:
        return optimize_sections(self._estimated(sections), token_budget)

    def trim_plan(self, sections: Sequence[PromptSection], token_budget: Optional[int]) -> List[str]:
        """Names of the sections that would be dropped, in drop order."""
        return self.optimize(sections, token_budget).trimmed_sections

    @staticmethod
    def sort_by_priority(sections: Sequence[PromptSection]) -> List[str]:
        """Section names in drop order (lowest priority first)."""
        indexed = sorted(enumerate(sections), key=lambda p: (p[1].priority, -p[0]))
        return [s.name for _, s in indexed]


# -------------------------
# Builder
# -------------------------

def _render_example(example: Any) -> str:
    if isinstance(example, UISchema):
        example = example.to_wire()
    if isinstance(example, str):
        body = example.strip()
    else:
        body = json.dumps(example, ensure_ascii=False, indent=2)
    return f"```json\n{body}\n```"


class PromptBuilder:
    """
    Fluent builder for the initial generation prompt.

    Example:
        result = (
            PromptBuilder(language="en", token_budget=4000)
            .with_system_intro()
            .with_output_format()
            .with_component_docs(catalog)
            .with_task("A login form with email and password")
            .build()
        )
    """

    def __init__(
        self,
        language: str = "en",
        token_budget: Optional[int] = None,
        priorities: Optional[Mapping[str, int]] = None,
        optimizer: Optional[PromptOptimizer] = None,
    ):
        _template("system-intro", language)  # fail fast on unknown language
        self.language = language
        self.token_budget = token_budget
        self.priorities: Dict[str, int] = {**DEFAULT_PRIORITIES, **(priorities or {})}
        self.optimizer = optimizer or PromptOptimizer()
        self._sections: List[PromptSection] = []

    # ----- generic -----

    def add_section(self, name: str, content: str, priority: Optional[int] = None) -> PromptBuilder:
        if priority is None:
            priority = self.priorities.get(name, CUSTOM_SECTION_PRIORITY)
        self._sections.append(PromptSection(name=name, priority=priority, content=content))
        return self

    @property
    def sections(self) -> List[PromptSection]:
        return list(self._sections)

    def current_token_count(self) -> int:
        return sum(s.estimated_tokens for s in self._sections)

    # ----- standard sections -----

    def with_system_intro(self) -> PromptBuilder:
        return self.add_section("system-intro", _template("system-intro", self.language))

    def with_output_format(self) -> PromptBuilder:
        return self.add_section("output-format", _template("output-format", self.language))

    def with_component_docs(self, catalog: StaticCatalog) -> PromptBuilder:
        docs = catalog.describe()
        if not docs:
            return self
        return self.add_section("component-docs", _template("component-docs", self.language).format(docs=docs))

    def with_examples(self, examples: Sequence[Any]) -> PromptBuilder:
        if not examples:
            return self
        rendered = "\n\n".join(_render_example(e) for e in examples)
        return self.add_section("examples", _template("examples", self.language).format(examples=rendered))

    def with_design_tokens(self, tokens: Optional[Mapping[str, Any]]) -> PromptBuilder:
        if not tokens:
            return self
        lines = "\n".join(f"- {name}: {value}" for name, value in sorted(tokens.items()))
        return self.add_section("design-tokens", _template("design-tokens", self.language).format(tokens=lines))

    def with_task(self, task: str) -> PromptBuilder:
        return self.add_section("task", _template("task", self.language).format(task=task.strip()))

    def build(self) -> PromptBuildResult:
        return self.optimizer.optimize(self._sections, self.token_budget)


def build_initial_prompt(
    task: str,
    *,
    catalog: Optional[StaticCatalog] = None,
    language: str = "en",
    token_budget: Optional[int] = None,
    examples: Sequence[Any] = (),
    design_tokens: Optional[Mapping[str, Any]] = None,
) -> PromptBuildResult:
    """Standard section set in semantic order."""
    builder = PromptBuilder(language=language, token_budget=token_budget).with_system_intro().with_output_format()
    if catalog is not None:
        builder.with_component_docs(catalog)
    return (
        builder.with_design_tokens(design_tokens)
        .with_examples(examples)
        .with_task(task)
        .build()
    )


# -------------------------
# Fix prompt
# -------------------------

def format_error_bullet(error: ValidationError) -> str:
    line = f"- [{error.code.value}] at \"{error.path}\": {error.message}"
    if error.suggestion:
        line += f" ({error.suggestion})"
    return line


def build_fix_prompt(
    task: str,
    previous_output: str,
    errors: Sequence[ValidationError],
    *,
    language: str = "en",
    max_output_chars: int = 4000,
) -> str:
    """
    Corrective prompt: original task unchanged, an invalid-attempt marker,
    the previous raw output (truncated when long), then one bullet per error.
    """
    previous = utils.sanitize_text(previous_output)
    previous, _ = utils.truncate_text(previous, max_output_chars)
    if not previous:
        previous = _template("no-output", language)

    parts = [
        task,
        _template("fix-marker", language),
        _template("fix-intro", language),
        _template("fix-output", language),
        # ~~~ so backtick fences inside the echoed output cannot close this block.
        f"~~~\n{previous}\n~~~",
        _template("fix-errors", language),
        "\n".join(format_error_bullet(e) for e in errors),
    ]
    return "\n\n".join(parts)
