import pytest
import requests

from llm.anthropic_provider import AnthropicChatProvider
from llm.base import ConversationTurn, Role, SamplingParams, merge_consecutive
from llm.gemini_provider import GeminiChatProvider
from llm.openai_provider import OpenAIChatProvider
from llm.qwen_provider import QwenChatProvider
from prompts.assistant import BRIDGE_ASSISTANT_PREAMBLE
from rag.errors import ConfigurationError, MalformedResponse, ProviderFailure, ValidationError

API_KEY = "sk-test-0123456789abcdef"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


CONVERSATION = [
    ConversationTurn(Role.USER, "What is a box girder?"),
    ConversationTurn(Role.ASSISTANT, "A hollow beam."),
    ConversationTurn(Role.USER, "How deep should it be?"),
]


def _provider(cls, payload=None, status=200, **kwargs):
    session = FakeSession(FakeResponse(status, payload))
    provider = cls(API_KEY, "test-model", "", sampling=SamplingParams(0.2, 512, 0.8), timeout=12.0, session=session, **kwargs)
    return provider, session


def test_openai_request_and_usage_mapping():
    provider, session = _provider(
        OpenAIChatProvider,
        {
            "model": "gpt-4o-mini-2024-07-18",
            "choices": [{"message": {"role": "assistant", "content": "About L/20."}}],
            "usage": {"prompt_tokens": 40, "completion_tokens": 6, "total_tokens": 46},
        },
    )

    response = provider.chat(CONVERSATION)

    call = session.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == f"Bearer {API_KEY}"
    assert call["timeout"] == 12.0
    assert call["json"]["messages"][0] == {"role": "system", "content": BRIDGE_ASSISTANT_PREAMBLE}
    assert call["json"]["messages"][1:] == [t.to_dict() for t in CONVERSATION]
    assert call["json"]["temperature"] == 0.2
    assert call["json"]["max_tokens"] == 512
    assert call["json"]["top_p"] == 0.8
    assert response.text == "About L/20."
    assert response.provider_id == "gpt"
    assert response.model == "gpt-4o-mini-2024-07-18"
    assert response.usage.to_dict() == {"prompt": 40, "completion": 6, "total": 46}


def test_anthropic_request_and_summed_usage():
    provider, session = _provider(
        AnthropicChatProvider,
        {
            "content": [{"type": "text", "text": "Typically "}, {"type": "text", "text": "L/20."}],
            "usage": {"input_tokens": 30, "output_tokens": 8},
        },
    )

    response = provider.chat([ConversationTurn(Role.ASSISTANT, "Hello.")] + CONVERSATION)

    call = session.calls[0]
    assert call["url"] == "https://api.anthropic.com/v1/messages"
    assert call["headers"]["x-api-key"] == API_KEY
    assert call["headers"]["anthropic-version"] == "2023-06-01"
    assert call["json"]["system"] == BRIDGE_ASSISTANT_PREAMBLE
    # leading assistant turns are dropped so the conversation opens with the user
    assert call["json"]["messages"][0]["role"] == "user"
    assert response.text == "Typically L/20."
    assert response.usage.to_dict() == {"prompt": 30, "completion": 8, "total": 38}


def test_gemini_request_maps_roles_and_system_instruction():
    provider, session = _provider(
        GeminiChatProvider,
        {
            "candidates": [{"content": {"parts": [{"text": "Around L/20."}], "role": "model"}}],
            "usageMetadata": {"promptTokenCount": 25, "candidatesTokenCount": 4, "totalTokenCount": 29},
        },
    )

    response = provider.chat(CONVERSATION)

    call = session.calls[0]
    assert call["url"] == "https://generativelanguage.googleapis.com/v1beta/models/test-model:generateContent"
    assert call["headers"]["x-goog-api-key"] == API_KEY
    assert API_KEY not in call["url"]
    assert call["json"]["systemInstruction"] == {"parts": [{"text": BRIDGE_ASSISTANT_PREAMBLE}]}
    assert [c["role"] for c in call["json"]["contents"]] == ["user", "model", "user"]
    assert call["json"]["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 512, "topP": 0.8}
    assert response.text == "Around L/20."
    assert response.usage.to_dict() == {"prompt": 25, "completion": 4, "total": 29}


@pytest.mark.parametrize(
    "output",
    [
        {"text": "About L/20."},
        {"choices": [{"message": {"role": "assistant", "content": "About L/20."}}]},
    ],
)
def test_qwen_accepts_text_and_message_result_formats(output):
    provider, session = _provider(
        QwenChatProvider,
        {"output": output, "usage": {"input_tokens": 20, "output_tokens": 5, "total_tokens": 25}},
    )

    response = provider.chat(CONVERSATION)

    call = session.calls[0]
    assert call["url"] == "https://dashscope.aliyuncs.com/api/v1/services/aigc/text-generation/generation"
    assert call["json"]["input"]["messages"][0]["role"] == "system"
    assert call["json"]["parameters"]["max_tokens"] == 512
    assert response.text == "About L/20."
    assert response.usage.to_dict() == {"prompt": 20, "completion": 5, "total": 25}


def test_missing_usage_normalizes_to_zero():
    provider, _ = _provider(OpenAIChatProvider, {"choices": [{"message": {"content": "ok"}}]})
    assert provider.chat(CONVERSATION).usage.to_dict() == {"prompt": 0, "completion": 0, "total": 0}


@pytest.mark.parametrize(
    "cls,payload",
    [
        (OpenAIChatProvider, {"choices": []}),
        (OpenAIChatProvider, {"choices": [{"message": {}}]}),
        (AnthropicChatProvider, {"content": []}),
        (GeminiChatProvider, {"candidates": []}),
        (GeminiChatProvider, {"candidates": [{"finishReason": "SAFETY"}]}),
        (QwenChatProvider, {"output": {}}),
        (QwenChatProvider, {"request_id": "x"}),
    ],
)
def test_success_without_expected_fields_is_malformed(cls, payload):
    provider, _ = _provider(cls, payload)
    with pytest.raises(MalformedResponse):
        provider.chat(CONVERSATION)


def test_non_json_success_is_malformed():
    provider, _ = _provider(OpenAIChatProvider, None)
    with pytest.raises(MalformedResponse):
        provider.chat(CONVERSATION)


@pytest.mark.parametrize("cls", [OpenAIChatProvider, AnthropicChatProvider, GeminiChatProvider, QwenChatProvider])
def test_unconfigured_provider_raises_configuration_error_without_calling_out(cls):
    session = FakeSession()
    provider = cls("", "test-model", "", session=session)
    assert provider.is_configured() is False
    with pytest.raises(ConfigurationError):
        provider.chat(CONVERSATION)
    assert session.calls == []


def test_quota_exhaustion_is_flagged():
    provider, _ = _provider(
        OpenAIChatProvider,
        {"error": {"message": "You exceeded your current quota", "type": "insufficient_quota"}},
        status=429,
    )
    with pytest.raises(ProviderFailure) as exc_info:
        provider.chat(CONVERSATION)
    assert exc_info.value.quota_exceeded is True
    assert exc_info.value.status_code == 429
    assert exc_info.value.provider == "gpt"
    assert "exceeded your current quota" in exc_info.value.message


def test_dashscope_quota_code_is_flagged():
    provider, _ = _provider(
        QwenChatProvider,
        {"code": "Throttling.AllocationQuota", "message": "Allocated quota exceeded"},
        status=400,
    )
    with pytest.raises(ProviderFailure) as exc_info:
        provider.chat(CONVERSATION)
    assert exc_info.value.quota_exceeded is True
    assert exc_info.value.message == "Allocated quota exceeded"


def test_error_messages_are_redacted():
    provider, _ = _provider(
        AnthropicChatProvider,
        {"error": {"type": "authentication_error", "message": f"invalid x-api-key {API_KEY}0123456789abcdefghij"}},
        status=401,
    )
    with pytest.raises(ProviderFailure) as exc_info:
        provider.chat(CONVERSATION)
    assert API_KEY not in str(exc_info.value)
    assert exc_info.value.quota_exceeded is False


def test_transport_error_becomes_provider_failure():
    session = FakeSession(error=requests.Timeout("read timed out"))
    provider = GeminiChatProvider(API_KEY, "test-model", "", session=session)
    with pytest.raises(ProviderFailure):
        provider.chat(CONVERSATION)


def test_empty_conversation_is_rejected():
    provider, _ = _provider(OpenAIChatProvider, {})
    with pytest.raises(ValidationError):
        provider.chat([])


def test_merge_consecutive_joins_same_role_runs():
    turns = [
        ConversationTurn(Role.USER, "a"),
        ConversationTurn(Role.USER, "b"),
        ConversationTurn(Role.ASSISTANT, "c"),
    ]
    assert merge_consecutive(turns) == [
        ConversationTurn(Role.USER, "a\n\nb"),
        ConversationTurn(Role.ASSISTANT, "c"),
    ]


def test_conversation_turn_from_dict_rejects_unknown_roles():
    assert ConversationTurn.from_dict({"role": "Assistant", "content": "x"}).role == Role.ASSISTANT
    with pytest.raises(ValidationError):
        ConversationTurn.from_dict({"role": "system", "content": "x"})
