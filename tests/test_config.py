"""Configuration loading: YAML values, environment overrides and validation."""

import pytest
from pydantic import ValidationError

from services.config import Config, load_config


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        "DATABASE_PATH: data/from_yaml.db\n"
        "PROCESSING_BATCH_SIZE: 5\n"
        "LLM_DEFAULT_PROVIDER: openai\n"
        "schedule:\n"
        "  digest_hour: 9\n"
        "  enabled: false\n"
    )
    return str(path)


def test_yaml_values_are_loaded(config_file, monkeypatch):
    for key in ("DATABASE_PATH", "PROCESSING_BATCH_SIZE", "LLM_DEFAULT_PROVIDER"):
        monkeypatch.delenv(key, raising=False)

    config = load_config(config_file)

    assert config.DATABASE_PATH == "data/from_yaml.db"
    assert config.PROCESSING_BATCH_SIZE == 5
    assert config.LLM_DEFAULT_PROVIDER == "openai"
    assert config.schedule.digest_hour == 9
    assert config.schedule.enabled is False
    assert config.schedule.daily_collection_hour == 6
    assert config.DIGEST_RELEVANCE_THRESHOLD == 0.3


def test_environment_overrides_yaml(config_file, monkeypatch):
    monkeypatch.setenv("PROCESSING_BATCH_SIZE", "12")
    monkeypatch.setenv("LLM_DEFAULT_PROVIDER", "Ollama")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

    config = load_config(config_file)

    assert config.PROCESSING_BATCH_SIZE == 12
    assert config.LLM_DEFAULT_PROVIDER == "ollama"
    assert config.ANTHROPIC_API_KEY == "sk-test"


def test_unknown_provider_is_rejected():
    with pytest.raises(ValidationError):
        Config(LLM_DEFAULT_PROVIDER="mistral")
