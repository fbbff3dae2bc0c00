import pytest

from ai_mem_agent.providers.llm import (
    AnthropicMessagesAdapter,
    ConfigurationError,
    OpenAICompatibleAdapter,
    ProviderConfig,
    create_adapter,
    detect_wire_format,
    normalize_endpoint,
)


@pytest.mark.parametrize(
    "endpoint, expected",
    [
        ("https://api.anthropic.com", "anthropic"),
        ("https://eu.api.anthropic.com/", "anthropic"),
        ("https://proxy.internal/v1/messages", "anthropic"),
        ("https://proxy.internal/messages/", "anthropic"),
        ("https://openrouter.ai/api/v1", "openai"),
        ("https://notanthropic.com/v1", "openai"),
        ("http://localhost:11434/v1/chat/completions", "openai"),
    ],
)
def test_detect_wire_format_from_url(endpoint, expected):
    assert detect_wire_format(endpoint) == expected


def test_explicit_format_wins():
    assert detect_wire_format("https://api.anthropic.com", "openai") == "openai"
    assert detect_wire_format("https://api.example.com", "ANTHROPIC") == "anthropic"


def test_unknown_format_rejected():
    with pytest.raises(ConfigurationError):
        detect_wire_format("https://api.example.com", "grpc")


@pytest.mark.parametrize(
    "endpoint, wire_format, expected",
    [
        ("https://api.example.com/v1", "openai", "https://api.example.com/v1/chat/completions"),
        ("https://api.example.com/v1/", "openai", "https://api.example.com/v1/chat/completions"),
        ("https://api.example.com/v1/chat/completions", "openai", "https://api.example.com/v1/chat/completions"),
        ("https://api.example.com/v1/chat/completions/", "openai", "https://api.example.com/v1/chat/completions"),
        ("https://api.anthropic.com", "anthropic", "https://api.anthropic.com/v1/messages"),
        ("https://api.anthropic.com/v1/messages", "anthropic", "https://api.anthropic.com/v1/messages"),
    ],
)
def test_normalize_endpoint_appends_suffix_once(endpoint, wire_format, expected):
    normalized = normalize_endpoint(endpoint, wire_format)

    assert normalized == expected
    assert normalize_endpoint(normalized, wire_format) == normalized


def test_create_adapter_picks_adapter_and_endpoint():
    anthropic = create_adapter(
        ProviderConfig(name="a", endpoint="https://api.anthropic.com", credential="k", model="m")
    )
    openai = create_adapter(
        ProviderConfig(name="o", endpoint="https://openrouter.ai/api/v1", credential="k", model="m")
    )

    assert isinstance(anthropic, AnthropicMessagesAdapter)
    assert anthropic.endpoint == "https://api.anthropic.com/v1/messages"
    assert isinstance(openai, OpenAICompatibleAdapter)
    assert openai.endpoint == "https://openrouter.ai/api/v1/chat/completions"
