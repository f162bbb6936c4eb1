"""Convenience exports for goal runner LLM client implementations."""

from .http_llm import HttpLLMClient
from .llm_client import (
    GenerateRequest,
    LLMClient,
    LLMClientError,
    LLMRetryError,
    LLMTransportError,
)

__all__ = [
    "GenerateRequest",
    "HttpLLMClient",
    "LLMClient",
    "LLMClientError",
    "LLMRetryError",
    "LLMTransportError",
]
