import pytest

from common.config import Settings
from llm.anthropic_provider import AnthropicChatProvider
from llm.gemini_provider import GeminiChatProvider
from llm.openai_provider import OpenAIChatProvider
from llm.qwen_provider import QwenChatProvider
from llm.registry import ChatProviderRegistry, build_chat_registry
from rag.errors import ValidationError


def _settings(**overrides):
    values = {
        "openai_api_key": "",
        "anthropic_api_key": "",
        "gemini_api_key": "",
        "qwen_api_key": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_registry_builds_every_listed_vendor():
    registry = build_chat_registry(_settings())

    assert registry.ids() == ["gpt", "claude", "gemini", "qwen"]
    assert isinstance(registry.get("gpt"), OpenAIChatProvider)
    assert isinstance(registry.get("claude"), AnthropicChatProvider)
    assert isinstance(registry.get("gemini"), GeminiChatProvider)
    assert isinstance(registry.get("qwen"), QwenChatProvider)


def test_available_lists_only_configured_providers():
    registry = build_chat_registry(_settings(anthropic_api_key="sk-ant-0123456789abcdef", qwen_api_key="demo"))
    assert registry.available() == ["claude"]


def test_lookup_is_case_insensitive_and_defaults():
    registry = build_chat_registry(_settings(default_chat_provider="Gemini"))
    assert registry.get("CLAUDE").provider_id == "claude"
    assert registry.get(None).provider_id == "gemini"
    assert registry.get("").provider_id == "gemini"


def test_unknown_provider_id_is_a_validation_error():
    registry = build_chat_registry(_settings())
    with pytest.raises(ValidationError, match="Unknown chat provider"):
        registry.get("llama")


def test_chat_providers_setting_limits_registry_and_skips_unknown_ids():
    registry = build_chat_registry(_settings(chat_providers="qwen, gpt, mystery, qwen"))
    assert registry.ids() == ["qwen", "gpt"]


def test_settings_flow_into_providers():
    config = _settings(
        openai_api_key="sk-test-0123456789abcdef",
        openai_chat_model="gpt-4o",
        chat_temperature=0.1,
        chat_max_tokens=300,
        provider_timeout=5.0,
        anthropic_version="2024-01-01",
    )
    registry = build_chat_registry(config)

    gpt = registry.get("gpt")
    assert gpt.model == "gpt-4o"
    assert gpt.sampling.temperature == 0.1
    assert gpt.sampling.max_tokens == 300
    assert gpt.timeout == 5.0
    assert registry.get("claude").api_version == "2024-01-01"


def test_describe_reports_configuration_state():
    registry = build_chat_registry(_settings(gemini_api_key="AIza-0123456789abcdef"))
    described = {p["id"]: p for p in registry.describe()}
    assert described["gemini"]["configured"] is True
    assert described["gpt"]["configured"] is False
    assert described["gpt"]["default"] is True


def test_empty_registry_without_default():
    registry = ChatProviderRegistry()
    with pytest.raises(ValidationError):
        registry.get(None)
