"""Alibaba Qwen via the DashScope text-generation API."""

from typing import Any, Dict, List

from llm.base import ChatProvider, ChatResponse, ConversationTurn, usage_from

DASHSCOPE_BASE_URL = "https://dashscope.aliyuncs.com"


class QwenChatProvider(ChatProvider):
    provider_id = "qwen"
    display_name = "Alibaba Qwen"

    def build_request(self, messages: List[ConversationTurn]):
        url = f"{self.base_url or DASHSCOPE_BASE_URL}/api/v1/services/aigc/text-generation/generation"
        payload = {
            "model": self.model,
            "input": {
                "messages": [{"role": "system", "content": self.preamble}] + [m.to_dict() for m in messages],
            },
            "parameters": {
                "max_tokens": self.sampling.max_tokens,
                "temperature": self.sampling.temperature,
                "top_p": self.sampling.top_p,
            },
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        return url, payload, headers

    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        output = data.get("output")
        if not isinstance(output, dict):
            raise self._malformed("'output'")

        # result_format=text puts the answer in output.text, result_format=message in choices
        text = output.get("text")
        if not isinstance(text, str):
            choices = output.get("choices")
            if isinstance(choices, list) and choices and isinstance(choices[0], dict):
                text = (choices[0].get("message") or {}).get("content")
        usage = usage_from(data.get("usage"), "input_tokens", "output_tokens", "total_tokens")
        return self._response(text, usage)
