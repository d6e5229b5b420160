import logging
from pathlib import Path

import pytest

from keel.config.loader import load_configuration
from keel.config.schema import Configuration, ContextConfig, ModelConfig
from keel.exceptions import ConfigurationError, ValidationError


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_any_file(tmp_path):
    config = load_configuration(cwd=tmp_path, system_path=tmp_path / "missing.toml")

    assert config.cwd == tmp_path
    assert config.max_turns == 50
    assert config.loop_detection.duplicate_file_threshold == 5
    assert config.developer_instructions is None


def test_project_config_overrides_system_config(tmp_path):
    system = _write(
        tmp_path / "system" / "config.toml",
        '[model]\nname = "system-model"\ntemperature = 0.2\n\n[tools]\ntimeout_sec = 30\n',
    )
    project = tmp_path / "project"
    _write(project / ".keel" / "config.toml", 'max_turns = 7\n\n[model]\nname = "project-model"\n')

    config = load_configuration(cwd=project, system_path=system)

    assert config.model.name == "project-model"
    assert config.model.temperature == 0.2
    assert config.tools.timeout_sec == 30
    assert config.max_turns == 7


def test_agent_md_becomes_developer_instructions(tmp_path):
    _write(tmp_path / "AGENT.MD", "Always use TypeScript.")

    config = load_configuration(cwd=tmp_path, system_path=tmp_path / "missing.toml")

    assert config.developer_instructions == "Always use TypeScript."


def test_invalid_project_toml_raises(tmp_path):
    _write(tmp_path / ".keel" / "config.toml", "max_turns = [unclosed\n")

    with pytest.raises(ConfigurationError) as exc_info:
        load_configuration(cwd=tmp_path, system_path=tmp_path / "missing.toml")

    assert exc_info.value.config_file.endswith("config.toml")


def test_invalid_system_toml_is_skipped(tmp_path, caplog):
    system = _write(tmp_path / "system.toml", "not = valid = toml\n")

    with caplog.at_level(logging.WARNING, logger="keel.config.loader"):
        config = load_configuration(cwd=tmp_path, system_path=system)

    assert config.max_turns == 50
    assert "Skipping invalid system config" in caplog.text


def test_out_of_range_values_raise_configuration_error(tmp_path):
    _write(tmp_path / ".keel" / "config.toml", "[model]\ntemperature = 5.0\n")

    with pytest.raises(ConfigurationError):
        load_configuration(cwd=tmp_path, system_path=tmp_path / "missing.toml")


def test_budget_is_window_minus_reserve():
    assert ModelConfig(context_window=10_000, response_reserve_fraction=0.25).budget == 7500
    assert Configuration().model.budget == 160_000


def test_inverted_output_clamp_is_rejected():
    with pytest.raises(ValidationError):
        ModelConfig(min_output_tokens=5000, max_output_tokens=100)


def test_validate_reports_problems(tmp_path, monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)
    config = Configuration(
        cwd=tmp_path / "nope",
        context=ContextConfig(keep_recent_messages=10, min_messages_for_compression=10),
    )

    errors = config.validate()

    assert len(errors) == 3
    assert any("API_KEY" in e for e in errors)
    assert any("does not exist" in e for e in errors)
    assert any("keep_recent_messages" in e for e in errors)


def test_validate_passes_with_key(tmp_path, monkeypatch):
    monkeypatch.setenv("API_KEY", "sk-test")

    assert Configuration(cwd=tmp_path).validate() == []
