"""OpenAI chat completions (and compatible endpoints)."""

from typing import Any, Dict, List

from llm.base import ChatProvider, ChatResponse, ConversationTurn, usage_from

OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAIChatProvider(ChatProvider):
    provider_id = "gpt"
    display_name = "OpenAI GPT"

    def build_request(self, messages: List[ConversationTurn]):
        url = f"{self.base_url or OPENAI_BASE_URL}/chat/completions"
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": self.preamble}] + [m.to_dict() for m in messages],
            "temperature": self.sampling.temperature,
            "max_tokens": self.sampling.max_tokens,
            "top_p": self.sampling.top_p,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        return url, payload, headers

    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise self._malformed("'choices'")
        message = choices[0].get("message") or {}
        usage = usage_from(data.get("usage"), "prompt_tokens", "completion_tokens", "total_tokens")
        return self._response(message.get("content"), usage, data.get("model"))
