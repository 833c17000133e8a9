"""LLM client implementations for invoice drafting and correction."""

from tradie_invoices.clients.base import LLMClientError, StructuredLLMClient, StructuredResponse
from tradie_invoices.clients.claude import ClaudeClient, ClaudeResponse
from tradie_invoices.clients.openai_client import OpenAIClient, OpenAIResponse
from tradie_invoices.config import get_settings


def get_llm_client() -> StructuredLLMClient:
    """Build the client for the configured provider."""
    if get_settings().llm_provider == "claude":
        return ClaudeClient()
    return OpenAIClient()


__all__ = [
    "LLMClientError",
    "StructuredLLMClient",
    "StructuredResponse",
    "ClaudeClient",
    "ClaudeResponse",
    "OpenAIClient",
    "OpenAIResponse",
    "get_llm_client",
]
