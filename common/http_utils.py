"""
Shared helpers for outbound HTTP calls to model and vector-database vendors.

Adapted from the search-provider helpers: key sanity checks, error message
redaction and tolerant JSON decoding.
"""

from __future__ import annotations

import re
from typing import Any

import requests


DEFAULT_TIMEOUT_S = 60.0


def is_valid_api_key(api_key: str) -> bool:
    if not api_key or not isinstance(api_key, str):
        return False
    api_key = api_key.strip()
    if len(api_key) < 10:
        return False
    if api_key.lower() in {"test", "demo", "example", "your_api_key_here", "xxx"}:
        return False
    return True


def sanitize_error_message(error: Any, limit: int = 300) -> str:
    sanitized = str(error)
    sanitized = re.sub(r"https?://[^\s]+", "[URL_REDACTED]", sanitized)
    sanitized = re.sub(r"\b[A-Za-z0-9]{32,}\b", "[KEY_REDACTED]", sanitized)
    sanitized = re.sub(
        r"api[_\-]?key[\s=:]+[\w\-]+",
        "api_key=[REDACTED]",
        sanitized,
        flags=re.IGNORECASE,
    )
    sanitized = re.sub(r"bearer\s+[\w\-\.]+", "Bearer [REDACTED]", sanitized, flags=re.IGNORECASE)
    if len(sanitized) > limit:
        sanitized = sanitized[:limit] + "..."
    return sanitized


def safe_json(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except Exception:
        return None


def extract_error_message(data: Any, fallback: str = "") -> str:
    """
    Pull the human-readable message out of a vendor error body.

    Handles ``{"error": {"message": ...}}`` (OpenAI, Anthropic, Gemini),
    ``{"message": ...}`` (DashScope, Pinecone) and plain strings.
    """
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if data.get("message"):
            return str(data["message"])
    elif isinstance(data, str) and data:
        return data
    return fallback


def extract_error_code(data: Any) -> str:
    """Return the vendor's machine-readable error code/type, lower-cased."""
    if not isinstance(data, dict):
        return ""
    err = data.get("error")
    if isinstance(err, dict):
        for key in ("code", "type", "status"):
            value = err.get(key)
            if isinstance(value, str) and value:
                return value.lower()
    value = data.get("code")
    if isinstance(value, str):
        return value.lower()
    return ""
