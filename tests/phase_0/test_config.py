from __future__ import annotations

import logging
import os

import pytest
import yaml

from backend.cognify.config import (
    AppConfig,
    ConfigError,
    GraphConfig,
    configure_logging,
    load_config,
)


def test_config_loads_expected_structure() -> None:
    config = load_config()
    assert isinstance(config, AppConfig)
    assert config.pipeline.version == "1.0.0"
    assert config.extraction.openai_model == "gpt-4o-mini"
    assert config.extraction.openai_base_url == "https://api.openai.com/v1"
    assert config.extraction.openai_prompt_version == "cognify-v1"
    assert config.extraction.streaming is True
    assert config.extraction.max_predicate_words == 3
    settings = config.extraction.openai
    assert settings.model == "gpt-4o-mini"
    assert settings.timeout_seconds == 30
    assert settings.max_retries == 2
    assert settings.max_output_tokens == 8192
    assert settings.backoff_initial_seconds == 1.0
    assert settings.backoff_max_seconds == 8.0
    assert 429 in settings.retry_statuses
    assert config.graph.soft_node_cap == 300
    assert config.graph.hard_node_cap == 500
    assert config.graph.edge_confidence == 0.9
    assert config.graph.max_input_chars == 50_000
    assert config.topic.enabled is True
    assert config.api.allowed_origins == ["http://localhost:3000"]
    assert config.logging.level == "INFO"


def test_config_strict_fields_match_yaml() -> None:
    config_path = AppConfig.default_path()
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)
    config = load_config()
    assert raw["pipeline"]["version"] == config.pipeline.version
    assert raw["extraction"]["openai_temperature"] == config.extraction.openai.temperature
    assert raw["extraction"]["openai_retry_statuses"] == config.extraction.openai.retry_statuses
    assert raw["graph"]["soft_node_cap"] == config.graph.soft_node_cap
    assert raw["topic"]["max_output_tokens"] == config.topic.max_output_tokens
    assert raw["logging"]["format"] == config.logging.format


def test_config_is_immutable() -> None:
    config = load_config()
    with pytest.raises(Exception):
        config.graph.hard_node_cap = 10  # type: ignore[misc]


def test_model_and_log_level_override_from_env(monkeypatch) -> None:
    load_config.cache_clear()
    monkeypatch.setenv("COGNIFY_SKIP_ENV_FILE", "1")
    monkeypatch.setenv("COGNIFY_OPENAI_MODEL", "gpt-4.1-mini")
    monkeypatch.setenv("COGNIFY_LOG_LEVEL", "debug")
    try:
        config = load_config()
        assert config.extraction.openai.model == "gpt-4.1-mini"
        assert config.logging.level == "DEBUG"
    finally:
        load_config.cache_clear()


def test_env_file_values_do_not_replace_existing_variables(monkeypatch, tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "# comment",
                "not an assignment",
                "COGNIFY_OPENAI_MODEL='gpt-from-file'",
                "COGNIFY_LOG_LEVEL = \"warning\"",
            ]
        ),
        encoding="utf-8",
    )
    load_config.cache_clear()
    monkeypatch.delenv("COGNIFY_SKIP_ENV_FILE", raising=False)
    monkeypatch.setenv("COGNIFY_ENV_FILE", str(env_file))
    monkeypatch.setenv("COGNIFY_OPENAI_MODEL", "gpt-from-shell")
    monkeypatch.delenv("COGNIFY_LOG_LEVEL", raising=False)
    try:
        config = load_config()
        assert config.extraction.openai.model == "gpt-from-shell"
        assert config.logging.level == "WARNING"
    finally:
        os.environ.pop("COGNIFY_LOG_LEVEL", None)
        load_config.cache_clear()


def test_missing_config_file_raises(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")


def test_invalid_yaml_raises(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("pipeline: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_soft_cap_above_hard_cap_fails_validation(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("COGNIFY_SKIP_ENV_FILE", "1")
    monkeypatch.delenv("COGNIFY_OPENAI_MODEL", raising=False)
    raw = yaml.safe_load(AppConfig.default_path().read_text(encoding="utf-8"))
    raw["graph"]["soft_node_cap"] = 600
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)
    with pytest.raises(ValueError):
        GraphConfig(soft_node_cap=10, hard_node_cap=5)


def test_configure_logging_accepts_configured_level(monkeypatch) -> None:
    calls = {}

    def fake_basic_config(**kwargs) -> None:
        calls.update(kwargs)

    monkeypatch.setattr(logging, "basicConfig", fake_basic_config)
    configure_logging(load_config())
    assert calls["level"] == logging.INFO
    assert "%(name)s" in calls["format"]
