from pathlib import Path

import pytest

from ai_mem_agent.core.utils.config import Settings, load_settings, resolve_provider_configs
from ai_mem_agent.providers.llm.base import ConfigurationError


def test_env_overrides(tmp_path, monkeypatch):
    config_path = tmp_path / "config.toml"
    config_path.write_text("model = 'file-model'\nmax_context_messages = 8\nremote_mode = false\n")
    monkeypatch.setenv("AI_MEM_API_KEY", "abc123")
    monkeypatch.setenv("AI_MEM_REMOTE_MODE", "true")
    monkeypatch.setenv("AI_MEM_MAX_ESTIMATED_TOKENS", "5000")
    monkeypatch.setenv("AI_MEM_DATABASE_PATH", str(tmp_path / "queue.db"))

    settings = load_settings(config_path)

    assert settings.api_key == "abc123"
    assert settings.model == "file-model"
    assert settings.max_context_messages == 8
    assert settings.max_estimated_tokens == 5000
    assert settings.remote_mode is True
    assert isinstance(settings.database_path, Path)


def test_unknown_keys_are_ignored(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text("model = 'm'\nnot_a_setting = 1\n")

    settings = load_settings(config_path)

    assert settings.model == "m"
    assert not hasattr(settings, "not_a_setting")


def test_project_config_discovered_in_parent_directory(tmp_path, monkeypatch):
    project_root = tmp_path / "repo"
    nested_dir = project_root / "src" / "module"
    nested_dir.mkdir(parents=True)
    (project_root / ".ai-mem.toml").write_text("model = 'parent-tree-model'\n")

    monkeypatch.chdir(nested_dir)

    settings = load_settings()

    assert settings.model == "parent-tree-model"


def test_resolve_primary_only():
    settings = Settings(api_url="https://api.example.com/v1", api_key="k", model="m", max_context_messages=6)

    configs = resolve_provider_configs(settings)

    assert len(configs) == 1
    assert configs[0].endpoint == "https://api.example.com/v1"
    assert configs[0].max_context_messages == 6
    assert "k" not in repr(configs[0])


def test_resolve_fallback_inherits_model_but_needs_own_key():
    settings = Settings(
        api_url="https://primary.example.com",
        api_key="primary-key",
        model="m",
        fallback_api_url="https://api.anthropic.com",
    )

    with pytest.raises(ConfigurationError, match="fallback_api_key"):
        resolve_provider_configs(settings)

    settings.fallback_api_key = "fallback-key"
    primary, fallback = resolve_provider_configs(settings)

    assert primary.name == "custom"
    assert fallback.name == "fallback"
    assert fallback.model == "m"
    assert fallback.credential == "fallback-key"


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"api_url": None}, "API URL"),
        ({"api_key": None}, "API key"),
        ({"api_format": "gemini"}, "Unsupported API format"),
    ],
)
def test_resolve_rejects_incomplete_settings(overrides, fragment):
    values = {"api_url": "https://api.example.com", "api_key": "k", "model": "m"}
    values.update(overrides)

    with pytest.raises(ConfigurationError, match=fragment):
        resolve_provider_configs(Settings(**values))
