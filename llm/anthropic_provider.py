"""Anthropic Claude via the Messages API."""

from typing import Any, Dict, List

from llm.base import ChatProvider, ChatResponse, ConversationTurn, Role, merge_consecutive, usage_from

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"


class AnthropicChatProvider(ChatProvider):
    """
    Claude requires the conversation to start with a user turn and to
    alternate roles; the preamble goes in the top-level ``system`` field.
    """

    provider_id = "claude"
    display_name = "Anthropic Claude"

    def __init__(self, *args, api_version: str = ANTHROPIC_VERSION, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_version = api_version or ANTHROPIC_VERSION

    def build_request(self, messages: List[ConversationTurn]):
        turns = merge_consecutive(messages)
        while turns and turns[0].role != Role.USER:
            turns = turns[1:]
        url = f"{self.base_url or ANTHROPIC_BASE_URL}/v1/messages"
        payload = {
            "model": self.model,
            "system": self.preamble,
            "messages": [t.to_dict() for t in turns],
            "max_tokens": self.sampling.max_tokens,
            "temperature": self.sampling.temperature,
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }
        return url, payload, headers

    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise self._malformed("'content'")
        texts = [b.get("text") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text"]
        texts = [t for t in texts if isinstance(t, str)]
        if not texts:
            raise self._malformed("a text content block")
        usage = usage_from(data.get("usage"), "input_tokens", "output_tokens")
        return self._response("".join(texts), usage, data.get("model"))
