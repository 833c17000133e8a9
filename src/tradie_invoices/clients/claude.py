"""Claude (Anthropic) LLM client using forced tool use for structured output."""

import json
from dataclasses import dataclass
from typing import Any

import anthropic
import structlog

from tradie_invoices.clients.base import LLMClientError
from tradie_invoices.config import get_settings

logger = structlog.get_logger(__name__)


@dataclass
class ClaudeResponse:
    """Response from Claude API."""

    content: str
    stop_reason: str
    usage: dict[str, int]


class ClaudeClient:
    """Client for Anthropic's Claude API.

    Claude has no JSON schema response format, so the schema is offered as
    the only tool and the model is forced to call it. The tool input is the
    structured result.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        if api_key is None and settings.anthropic_api_key is not None:
            api_key = settings.anthropic_api_key.get_secret_value()
        if not api_key:
            raise LLMClientError("claude", "ANTHROPIC_API_KEY is not set")
        self._api_key = api_key
        self._model = model or settings.claude_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        self._logger = logger.bind(client="claude", model=self._model)

    def _schema_as_tool(self, schema_name: str, schema: dict[str, Any]) -> dict[str, Any]:
        """Wrap a JSON schema in Anthropic's tool format."""
        return {
            "name": schema_name,
            "description": "Record the invoice as structured JSON.",
            "input_schema": schema,
        }

    def _parse_response(
        self, response: anthropic.types.Message, schema_name: str
    ) -> ClaudeResponse:
        """Pull the forced tool call's input out of the response."""
        for block in response.content:
            if block.type == "tool_use" and block.name == schema_name:
                return ClaudeResponse(
                    content=json.dumps(block.input),
                    stop_reason=response.stop_reason or "tool_use",
                    usage={
                        "input_tokens": response.usage.input_tokens,
                        "output_tokens": response.usage.output_tokens,
                    },
                )

        raise LLMClientError(
            "claude",
            "Response did not contain the structured tool call",
            details={"stop_reason": response.stop_reason},
        )

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        schema: dict[str, Any],
    ) -> ClaudeResponse:
        """Generate a JSON response constrained by ``schema``.

        Args:
            system_prompt: Instructions for the model.
            user_prompt: The request content.
            schema_name: Tool name the model is forced to call.
            schema: JSON schema for the tool input.

        Returns:
            ClaudeResponse whose content is the tool input as JSON text.

        Raises:
            LLMClientError: If the API call fails or no tool call came back.
        """
        self._logger.debug("generating_structured_response", schema=schema_name)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
            "tools": [self._schema_as_tool(schema_name, schema)],
            "tool_choice": {"type": "tool", "name": schema_name},
        }

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise LLMClientError("claude", str(e)) from e

        parsed = self._parse_response(response, schema_name)

        self._logger.info(
            "response_generated",
            schema=schema_name,
            stop_reason=parsed.stop_reason,
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )

        return parsed
