"""Client base class shared by all language-model integrations."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

__all__ = [
    "GenerateRequest",
    "LLMClient",
    "LLMClientError",
    "LLMRetryError",
    "LLMTransportError",
    "Message",
]


Message = Dict[str, str]


class LLMClientError(RuntimeError):
    """Base error raised for LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated transport failures."""


@dataclass(slots=True)
class GenerateRequest:
    """Chat-style generation request sent to the inference backend."""

    messages: List[Message]
    max_tokens: int = 4000
    temperature: float = 0.0
    purpose: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Render the ``/llm/generate`` request body."""
        return {
            "messages": [
                {"role": str(message.get("role", "user")), "content": str(message.get("content", ""))}
                for message in self.messages
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }


class LLMClient:
    """High-level helper that retries transport failures and returns raw text.

    The text is returned untouched: callers never assume it holds valid JSON
    and route it through :mod:`goalrunner.parsing` instead.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def generate(self, request: GenerateRequest) -> str:
        """Invoke the model and return the response text."""
        payload = request.to_payload()
        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._raw_invoke(payload)
            except LLMTransportError as error:
                last_error = error
                if error.status is not None and 400 <= error.status < 500:
                    break
                if attempt >= self._max_attempts:
                    break
                self._sleep(self._retry_delay)

        raise LLMRetryError(
            f"Failed to obtain a model response after {self._max_attempts} attempt(s): {last_error}"
        ) from last_error

    def __call__(self, request: GenerateRequest) -> str:
        return self.generate(request)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
