# tests/conftest.py
import json
from pathlib import Path

import pytest  # pyright: ignore[reportMissingImports]

from llm2ui.config import GenerationConfig


@pytest.fixture(autouse=True)
def _force_offline_env(monkeypatch):
    # Keep CI honest; if anyone tries to wire a real adapter in tests, fail fast.
    monkeypatch.setenv("LLM2UI_FORCE_MOCK", "1")
    monkeypatch.setenv("NO_NETWORK", "1")


@pytest.fixture
def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


@pytest.fixture
def tasks_dir(repo_root: Path) -> Path:
    return repo_root / "examples" / "tasks"


@pytest.fixture
def mock_config() -> GenerationConfig:
    return GenerationConfig(provider="custom", api_key="test", model="local-mock", endpoint="local://mock")


def fenced(value, tag="json") -> str:
    body = value if isinstance(value, str) else json.dumps(value)
    return f"```{tag}\n{body}\n```"


def valid_schema(**root_overrides):
    root = {"id": "root", "type": "Container", "children": [{"id": "btn", "type": "Button", "text": "OK"}]}
    root.update(root_overrides)
    return {"version": "1.0", "root": root}
