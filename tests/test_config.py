"""Tests for config schema and loading."""
from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from agentic_runtime.config import (
    DEFAULT_CONFIG,
    DEFAULT_MAX_STEPS,
    PlanningConfig,
    RuntimeSettings,
    get_config,
    load_config,
)


def _write(tmp_path, data) -> str:
    path = tmp_path / "runtime.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_default_config_without_env(monkeypatch):
    monkeypatch.delenv("AGENT_RUNTIME_CONFIG_PATH", raising=False)
    monkeypatch.delenv("AGENT_RUNTIME_API_KEY", raising=False)
    monkeypatch.delenv("AGENT_RUNTIME_MAX_STEPS", raising=False)
    cfg = get_config()
    assert cfg is DEFAULT_CONFIG
    assert cfg.max_steps == DEFAULT_MAX_STEPS
    assert cfg.model.backend == "openai"
    assert cfg.planning.interval is None


def test_config_from_file(monkeypatch, tmp_path):
    path = _write(tmp_path, {
        "model": {"base_url": "http://127.0.0.1:9000/v1", "model": "my-model", "temperature": 0.2},
        "max_steps": 7,
        "planning": {"interval": 3},
        "memory": {"strategy": "mask", "keep_recent": 2},
    })
    monkeypatch.setenv("AGENT_RUNTIME_CONFIG_PATH", path)
    cfg = load_config()
    assert cfg.model.model == "my-model"
    assert cfg.model.temperature == 0.2
    assert cfg.max_steps == 7
    assert cfg.planning.interval == 3
    assert cfg.memory.strategy == "mask"


def test_missing_file_falls_back_to_default(monkeypatch, tmp_path):
    monkeypatch.setenv("AGENT_RUNTIME_CONFIG_PATH", str(tmp_path / "absent.json"))
    assert load_config() is DEFAULT_CONFIG


def test_env_overrides_api_key_and_max_steps(monkeypatch):
    monkeypatch.delenv("AGENT_RUNTIME_CONFIG_PATH", raising=False)
    monkeypatch.setenv("AGENT_RUNTIME_API_KEY", "sk-test")
    monkeypatch.setenv("AGENT_RUNTIME_MAX_STEPS", "4")
    cfg = load_config()
    assert cfg.model.api_key == "sk-test"
    assert cfg.max_steps == 4
    assert DEFAULT_CONFIG.model.api_key == ""


def test_env_max_steps_must_be_positive(monkeypatch):
    monkeypatch.delenv("AGENT_RUNTIME_CONFIG_PATH", raising=False)
    monkeypatch.setenv("AGENT_RUNTIME_MAX_STEPS", "0")
    with pytest.raises(ValidationError):
        load_config()


def test_load_config_is_cached(monkeypatch):
    monkeypatch.delenv("AGENT_RUNTIME_CONFIG_PATH", raising=False)
    assert load_config() is load_config()


@pytest.mark.parametrize("field,value", [
    ("max_steps", 0),
    ("max_tool_concurrency", 0),
    ("sandbox_timeout_s", 0),
])
def test_invalid_runtime_values_rejected(field, value):
    data = DEFAULT_CONFIG.model_dump()
    data[field] = value
    with pytest.raises(ValidationError):
        RuntimeSettings.model_validate(data)


def test_planning_interval_must_be_positive():
    with pytest.raises(ValidationError):
        PlanningConfig(interval=0)
