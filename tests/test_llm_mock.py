# tests/test_llm_mock.py
import asyncio
import json

import pytest  # pyright: ignore[reportMissingImports]

from llm2ui.catalog import default_catalog
from llm2ui.config import GenerationConfig
from llm2ui.extraction import extract_json
from llm2ui.llm import (
    LLM,
    AnthropicAdapter,
    LocalMock,
    OpenAIAdapter,
    StreamingLLM,
    collect_stream,
    create_llm,
    inject_system_prompt,
)
from llm2ui.prompts import build_initial_prompt
from llm2ui.schemas import ChatMessage
from llm2ui.validation import validate


def _user(text: str) -> ChatMessage:
    return ChatMessage(role="user", content=text)


def _schema_from(text: str):
    result = extract_json(text)
    assert result.success, result.error
    return result.parsed


async def test_determinism_same_input_same_output():
    mock = LocalMock()
    msgs = [_user("A product card with a buy button")]
    out1 = await mock.generate(msgs)
    out2 = await mock.generate(msgs)
    assert out1 == out2
    assert "[MOCK]" in out1


async def test_domain_templates_follow_request_text():
    mock = LocalMock()
    form = _schema_from(await mock.generate([_user("A login form")]))
    table = _schema_from(await mock.generate([_user("A table of orders")]))
    card = _schema_from(await mock.generate([_user("Something pleasant")]))
    assert form["root"]["type"] == "Form"
    assert any(c["type"] == "Table" for c in table["root"]["children"])
    assert card["root"]["type"] == "Card"


async def test_templates_validate_against_default_catalog():
    mock = LocalMock()
    catalog = default_catalog()
    for task in ("A signup form", "A dashboard listing users", "An about card"):
        prompt = build_initial_prompt(task, catalog=catalog).text
        schema = _schema_from(await mock.generate([_user(prompt)]))
        assert validate(schema, catalog).valid, task


async def test_template_reads_request_section_not_instructions():
    # The output-format section mentions "format"; only the request decides the template.
    prompt = build_initial_prompt("A pleasant greeting", catalog=default_catalog()).text
    schema = _schema_from(await LocalMock().generate([_user(prompt)]))
    assert schema["root"]["type"] == "Card"


async def test_scripted_responses_replay_and_repeat_last():
    mock = LocalMock(responses=["one", "two"])
    outs = [await mock.generate([_user("x")]) for _ in range(4)]
    assert outs == ["one", "two", "two", "two"]
    assert mock.call_count == 4


async def test_flaky_first_call_omits_ids():
    mock = LocalMock(flaky=True)
    first = _schema_from(await mock.generate([_user("A login form")]))
    second = _schema_from(await mock.generate([_user("A login form")]))
    assert "id" not in first["root"]
    assert second["root"]["id"] == "form"


async def test_records_calls_without_mutating_messages():
    mock = LocalMock()
    msgs = [ChatMessage(role="system", content="s"), _user("hi")]
    await mock.generate(msgs)
    assert mock.calls == [msgs]
    assert len(msgs) == 2


async def test_delay_is_applied():
    mock = LocalMock(delay_seconds=0.05)
    loop = asyncio.get_running_loop()
    t0 = loop.time()
    await mock.generate([_user("x")])
    assert loop.time() - t0 >= 0.04


async def test_stream_collects_to_same_text():
    mock = LocalMock()
    msgs = [_user("A login form")]
    assert await collect_stream(mock.stream(msgs)) == await mock.generate(msgs)


def test_mock_satisfies_llm_protocols():
    assert isinstance(LocalMock(), LLM)
    assert isinstance(LocalMock(), StreamingLLM)


def test_inject_system_prompt():
    cfg = GenerationConfig(provider="openai", api_key="k", model="m", system_prompt="Be terse.")
    msgs = [_user("hi")]
    out = inject_system_prompt(msgs, cfg)
    assert [m.role for m in out] == ["system", "user"]
    assert out[0].content == "Be terse."
    assert len(msgs) == 1  # original untouched

    leading = [ChatMessage(role="system", content="Existing"), _user("hi")]
    assert inject_system_prompt(leading, cfg) == leading
    assert inject_system_prompt(msgs, None) == msgs


@pytest.mark.parametrize("adapter", [OpenAIAdapter, AnthropicAdapter])
def test_real_adapters_refuse_to_start_offline(adapter):
    cfg = GenerationConfig(provider="openai", api_key="k", model="m")
    with pytest.raises(RuntimeError, match="Network use disabled"):
        adapter(cfg)


def test_create_llm_is_guarded_too():
    with pytest.raises(RuntimeError):
        create_llm(GenerationConfig(provider="anthropic", api_key="k", model="m"))


async def test_fenced_output_is_pretty_json():
    out = await LocalMock().generate([_user("A card")])
    body = out.split("```json\n", 1)[1].split("\n```", 1)[0]
    assert json.loads(body)["version"] == "1.0"
