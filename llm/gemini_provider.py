"""Google Gemini via generateContent."""

from typing import Any, Dict, List

from llm.base import ChatProvider, ChatResponse, ConversationTurn, Role, merge_consecutive, usage_from

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiChatProvider(ChatProvider):
    provider_id = "gemini"
    display_name = "Google Gemini"

    def build_request(self, messages: List[ConversationTurn]):
        contents = [
            {
                "role": "model" if t.role == Role.ASSISTANT else "user",
                "parts": [{"text": t.content}],
            }
            for t in merge_consecutive(messages)
        ]
        url = f"{self.base_url or GEMINI_BASE_URL}/models/{self.model}:generateContent"
        payload = {
            "systemInstruction": {"parts": [{"text": self.preamble}]},
            "contents": contents,
            "generationConfig": {
                "temperature": self.sampling.temperature,
                "maxOutputTokens": self.sampling.max_tokens,
                "topP": self.sampling.top_p,
            },
        }
        # key in a header, not the query string, so it never shows up in URLs
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        return url, payload, headers

    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            raise self._malformed("'candidates'")
        parts = (candidates[0].get("content") or {}).get("parts")
        if not isinstance(parts, list):
            raise self._malformed("candidate content parts")
        texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        if not texts:
            raise self._malformed("candidate text")
        usage = usage_from(data.get("usageMetadata"), "promptTokenCount", "candidatesTokenCount", "totalTokenCount")
        return self._response("".join(texts), usage, data.get("modelVersion"))
