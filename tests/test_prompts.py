# tests/test_prompts.py
import pytest  # pyright: ignore[reportMissingImports]

from llm2ui.catalog import default_catalog
from llm2ui.prompts import (
    PromptBuilder,
    PromptOptimizer,
    build_fix_prompt,
    build_initial_prompt,
    optimize_sections,
)
from llm2ui.schemas import ErrorCode, PromptSection, ValidationError
from llm2ui import utils


def _section(name, priority, tokens):
    return PromptSection(name=name, priority=priority, content=name, estimated_tokens=tokens)


def test_unlimited_budget_keeps_everything_in_order():
    sections = [_section("a", 1, 100), _section("b", 5, 100), _section("c", 3, 100)]
    result = optimize_sections(sections, None)
    assert result.included_sections == ["a", "b", "c"]
    assert result.trimmed_sections == []
    assert result.text == "a\n\nb\n\nc"
    assert not result.over_budget


def test_lowest_priority_trimmed_first_and_order_preserved():
    sections = [_section("intro", 10, 50), _section("examples", 3, 50), _section("docs", 6, 50), _section("task", 9, 50)]
    result = optimize_sections(sections, 120)
    assert result.trimmed_sections == ["examples", "docs"]
    assert result.included_sections == ["intro", "task"]
    assert result.total_tokens == 100
    assert not result.over_budget


def test_priority_ties_drop_later_section_first():
    sections = [_section("first", 2, 50), _section("second", 2, 50), _section("keep", 9, 10)]
    result = optimize_sections(sections, 70)
    assert result.trimmed_sections == ["second"]
    assert result.included_sections == ["first", "keep"]


def test_highest_priority_section_is_never_dropped():
    sections = [_section("docs", 6, 10), _section("task", 9, 500)]
    result = optimize_sections(sections, 100)
    assert result.included_sections == ["task"]
    assert result.trimmed_sections == ["docs"]
    assert result.total_tokens == 500
    assert result.over_budget


def test_sections_are_atomic():
    content = "x" * 400
    sections = [PromptSection(name="big", priority=1, content=content), _section("task", 9, 10)]
    result = optimize_sections(sections, 50)
    assert content not in result.text
    assert result.trimmed_sections == ["big"]


def test_section_estimate_is_filled_from_content():
    s = PromptSection(name="a", priority=1, content="hello world")
    assert s.estimated_tokens == utils.rough_token_count("hello world")


def test_optimizer_trim_plan_and_priority_order():
    sections = [_section("a", 5, 10), _section("b", 1, 10), _section("c", 5, 10)]
    optimizer = PromptOptimizer(estimator=lambda text: 10)
    assert optimizer.trim_plan(sections, 15) == ["b", "c"]
    assert PromptOptimizer.sort_by_priority(sections) == ["b", "c", "a"]


def test_builder_standard_sections_and_default_priorities():
    builder = (
        PromptBuilder()
        .with_system_intro()
        .with_output_format()
        .with_component_docs(default_catalog())
        .with_design_tokens({"color.primary": "#2563eb"})
        .with_examples([{"version": "1.0", "root": {"id": "a", "type": "Text"}}])
        .with_task("A login form")
    )
    names = [s.name for s in builder.sections]
    assert names == ["system-intro", "output-format", "component-docs", "design-tokens", "examples", "task"]
    priorities = {s.name: s.priority for s in builder.sections}
    assert priorities["task"] > priorities["system-intro"] > priorities["output-format"]
    assert priorities["component-docs"] > priorities["design-tokens"] > priorities["examples"]

    result = builder.build()
    assert "A login form" in result.text
    assert "Button" in result.text
    assert "color.primary" in result.text


def test_builder_trims_examples_before_docs():
    long_examples = [{"version": "1.0", "root": {"id": f"n{i}", "type": "Text", "text": "lorem " * 40}} for i in range(5)]
    builder = (
        PromptBuilder(token_budget=1)
        .with_system_intro()
        .with_component_docs(default_catalog())
        .with_examples(long_examples)
        .with_task("A card")
    )
    full = builder.current_token_count()
    example_tokens = next(s.estimated_tokens for s in builder.sections if s.name == "examples")
    builder.token_budget = full - 1
    result = builder.build()
    assert result.trimmed_sections == ["examples"]
    builder.token_budget = full - example_tokens - 1
    assert builder.build().trimmed_sections == ["examples", "component-docs"]


def test_tiny_budget_keeps_the_request():
    task = "A login form with email, password and a remember-me checkbox"
    result = build_initial_prompt(task, catalog=default_catalog(), token_budget=40)
    assert "task" in result.included_sections
    assert task in result.text
    assert "component-docs" in result.trimmed_sections


def test_empty_optional_sections_are_skipped():
    builder = PromptBuilder().with_examples([]).with_design_tokens(None).with_task("x")
    assert [s.name for s in builder.sections] == ["task"]


def test_chinese_templates():
    result = build_initial_prompt("一个登录表单", language="zh")
    assert "## 需求" in result.text
    assert "一个登录表单" in result.text


def test_unknown_language_is_rejected():
    with pytest.raises(ValueError):
        PromptBuilder(language="fr")


def test_custom_section_priority():
    builder = PromptBuilder().add_section("notes", "n").add_section("rules", "r", priority=7)
    assert [s.priority for s in builder.sections] == [5, 7]


# -------------------------
# Fix prompt
# -------------------------

def test_fix_prompt_contains_task_marker_output_and_error_bullets():
    errors = [
        ValidationError(path="root.id", code=ErrorCode.MISSING_FIELD, message="Missing required field: id"),
        ValidationError(
            path="root.children[0].type",
            code=ErrorCode.UNKNOWN_COMPONENT,
            message='Unknown component type "Buton"',
            suggestion="Did you mean: Button?",
        ),
    ]
    prompt = build_fix_prompt("Build a login form", '{"root": {"type": "Form"}}', errors)

    assert prompt.startswith("Build a login form")
    assert "Previous attempt was invalid" in prompt
    assert '{"root": {"type": "Form"}}' in prompt
    assert '- [MISSING_FIELD] at "root.id": Missing required field: id' in prompt
    assert '- [UNKNOWN_COMPONENT] at "root.children[0].type": Unknown component type "Buton" (Did you mean: Button?)' in prompt
    # task, marker, output, errors in that order
    assert prompt.index("invalid") < prompt.index('{"root"') < prompt.index("[MISSING_FIELD]")


def test_fix_prompt_truncates_long_output():
    prompt = build_fix_prompt("task", "x" * 10_000, [], max_output_chars=100)
    assert utils.TRUNCATION_MARKER.strip() in prompt
    assert "x" * 101 not in prompt


def test_fix_prompt_handles_missing_output():
    prompt = build_fix_prompt(
        "task", "", [ValidationError(path="", code=ErrorCode.TIMEOUT, message="Generation did not finish")]
    )
    assert "(no output)" in prompt
    assert '- [TIMEOUT] at "": Generation did not finish' in prompt
