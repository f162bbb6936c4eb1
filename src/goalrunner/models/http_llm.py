"""LLM client that talks to the backend ``/llm/generate`` endpoint."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

from ..errors import CollaboratorError
from ..http import DEFAULT_BASE_URL, JsonHttpClient, Transport
from .llm_client import LLMClient, LLMTransportError

LOGGER = logging.getLogger(__name__)

__all__ = ["HttpLLMClient"]


class HttpLLMClient(LLMClient):
    """Thin adapter around the backend generation endpoint."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        http: Optional[JsonHttpClient] = None,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(max_attempts=max_attempts, retry_delay=retry_delay)
        timeout_override = os.getenv("GOALRUNNER_LLM_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                LOGGER.warning("Ignoring invalid GOALRUNNER_LLM_TIMEOUT value: %r", timeout_override)
        self._http = http or JsonHttpClient(
            base_url or DEFAULT_BASE_URL,
            transport=transport,
            timeout=timeout,
        )

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request and extract the generated text."""
        try:
            body = self._http.post("llm/generate", payload)
        except CollaboratorError as error:
            raise LLMTransportError(str(error), status=error.status) from error
        return self._extract_text(body)

    @staticmethod
    def _extract_text(body: Any) -> str:
        """Pull the model text out of the backend response body."""
        if isinstance(body, str):
            return body
        if not isinstance(body, dict):
            return ""

        for key in ("response", "content"):
            value = body.get(key)
            if isinstance(value, str):
                return value
            if isinstance(value, (dict, list)):
                return json.dumps(value)

        # OpenAI-style passthrough payloads.
        choices = body.get("choices")
        if isinstance(choices, list):
            for choice in choices:
                if not isinstance(choice, dict):
                    continue
                message = choice.get("message")
                if isinstance(message, dict) and isinstance(message.get("content"), str):
                    return message["content"]
                if isinstance(choice.get("text"), str):
                    return choice["text"]
        return ""
