"""
Chat provider abstraction.

Every vendor implementation takes the same normalized conversation and
returns the same ``ChatResponse``; vendor envelopes never leak past the
provider. Sending is shared here: POST with a timeout, error classification
and credential redaction. Subclasses only build the request and parse the
success body.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import requests

from common.http_utils import (
    DEFAULT_TIMEOUT_S,
    extract_error_code,
    extract_error_message,
    is_valid_api_key,
    safe_json,
    sanitize_error_message,
)
from prompts.assistant import BRIDGE_ASSISTANT_PREAMBLE
from rag.errors import ConfigurationError, MalformedResponse, ProviderFailure, ValidationError

logger = logging.getLogger(__name__)

QUOTA_ERROR_CODES = {
    "insufficient_quota",
    "quota_exceeded",
    "billing_hard_limit_reached",
    "rate_limit_exceeded",
    "rate_limit_error",
    "resource_exhausted",
    "throttling",
    "throttling.allocationquota",
}


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    content: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationTurn":
        try:
            role = Role(str(data.get("role", "")).strip().lower())
        except ValueError:
            raise ValidationError(f"Unsupported conversation role: {data.get('role')!r}")
        return cls(role=role, content=str(data.get("content") or ""))

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class TokenUsage:
    prompt: int = 0
    completion: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion, "total": self.total}


@dataclass
class ChatResponse:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    provider_id: str = ""


@dataclass
class SamplingParams:
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float = 0.9


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def usage_from(data: Any, prompt_key: str, completion_key: str, total_key: Optional[str] = None) -> TokenUsage:
    """Normalize a vendor usage block. A missing total is the sum of the parts."""
    if not isinstance(data, dict):
        return TokenUsage()
    prompt = _as_int(data.get(prompt_key))
    completion = _as_int(data.get(completion_key))
    total = _as_int(data.get(total_key)) if total_key else 0
    return TokenUsage(prompt=prompt, completion=completion, total=total or prompt + completion)


def merge_consecutive(turns: Sequence[ConversationTurn]) -> List[ConversationTurn]:
    """Collapse runs of same-role turns for vendors that require alternation."""
    merged: List[ConversationTurn] = []
    for turn in turns:
        if merged and merged[-1].role == turn.role:
            merged[-1] = ConversationTurn(merged[-1].role, f"{merged[-1].content}\n\n{turn.content}")
        else:
            merged.append(turn)
    return merged


class ChatProvider(ABC):
    """
    One language-model vendor behind a common ``chat`` call.

    No retry or cross-provider fallback happens here; callers pick the
    provider and decide what to do with a failure.
    """

    provider_id: str = ""
    display_name: str = ""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        sampling: Optional[SamplingParams] = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        session: Optional[requests.Session] = None,
        preamble: str = BRIDGE_ASSISTANT_PREAMBLE,
    ):
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = (base_url or "").rstrip("/")
        self.sampling = sampling or SamplingParams()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.preamble = preamble

    def is_configured(self) -> bool:
        return is_valid_api_key(self.api_key)

    def chat(self, messages: Sequence[ConversationTurn]) -> ChatResponse:
        if not self.is_configured():
            raise ConfigurationError(f"{self.display_name} API key is not configured")
        if not messages:
            raise ValidationError("Conversation must contain at least one turn")

        url, payload, headers = self.build_request(list(messages))
        logger.debug(f"[{self.provider_id}] POST {self.model} with {len(messages)} turns")
        data = self._post(url, payload, headers)
        response = self.parse_response(data)
        logger.info(
            f"[{self.provider_id}] {self.model} answered "
            f"({response.usage.prompt} prompt / {response.usage.completion} completion tokens)"
        )
        return response

    @abstractmethod
    def build_request(self, messages: List[ConversationTurn]) -> tuple:
        """Return ``(url, json_payload, headers)`` for the vendor endpoint."""

    @abstractmethod
    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        """Map a success body to ``ChatResponse``; raise MalformedResponse on missing fields."""

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            resp = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderFailure(self.provider_id, sanitize_error_message(e)) from e

        data = safe_json(resp)
        if resp.status_code < 200 or resp.status_code >= 300:
            message = extract_error_message(data, fallback=resp.text or "request failed")
            code = extract_error_code(data)
            raise ProviderFailure(
                self.provider_id,
                sanitize_error_message(message),
                status_code=resp.status_code,
                quota_exceeded=resp.status_code == 429 or code in QUOTA_ERROR_CODES,
            )
        if not isinstance(data, dict):
            raise MalformedResponse(self.provider_id, "response body is not a JSON object")
        return data

    def _malformed(self, what: str) -> MalformedResponse:
        return MalformedResponse(self.provider_id, f"response is missing {what}")

    def _response(self, text: Any, usage: TokenUsage, model: Any = None) -> ChatResponse:
        if not isinstance(text, str):
            raise self._malformed("generated text")
        return ChatResponse(text=text, usage=usage, model=str(model or self.model), provider_id=self.provider_id)
