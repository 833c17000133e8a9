"""Shared contract for structured-output LLM clients."""

from typing import Any, Protocol


class LLMClientError(Exception):
    """The LLM provider call failed (network, auth, rate limit, refusal)."""

    def __init__(self, provider: str, message: str, details: Any = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.details = details


class StructuredResponse(Protocol):
    """What every client returns: the raw JSON text plus bookkeeping."""

    content: str
    stop_reason: str
    usage: dict[str, int]


class StructuredLLMClient(Protocol):
    """A client that can return JSON constrained by a schema."""

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        schema: dict[str, Any],
    ) -> StructuredResponse: ...
