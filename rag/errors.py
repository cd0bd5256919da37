"""
Error taxonomy for the RAG engine.

ConfigurationError   missing credential / inconsistent wiring (remote strategies only)
ProviderFailure      remote API non-success, including quota exhaustion
MalformedResponse    success status but unusable payload
ValidationError      bad caller input (empty query, dimension mismatch, ...)
"""

from typing import Optional


class RAGError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(RAGError):
    """A provider or strategy was selected without the configuration it needs."""


class ProviderFailure(RAGError):
    """A remote provider answered with a non-success status or could not be reached."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        quota_exceeded: bool = False,
    ):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        self.quota_exceeded = quota_exceeded
        detail = f"{provider}: {message}"
        if status_code is not None:
            detail = f"{provider} ({status_code}): {message}"
        super().__init__(detail)


class MalformedResponse(RAGError):
    """A success response did not carry the fields the caller needs."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class ValidationError(RAGError):
    """Caller input was rejected before any work was done."""
