"""OpenAI GPT client with strict structured output support."""

from dataclasses import dataclass
from typing import Any

import openai
import structlog

from tradie_invoices.clients.base import LLMClientError
from tradie_invoices.config import get_settings

logger = structlog.get_logger(__name__)


@dataclass
class OpenAIResponse:
    """Response from OpenAI API."""

    content: str
    stop_reason: str
    usage: dict[str, int]


class OpenAIClient:
    """Client for OpenAI's chat completions API with JSON schema output.

    Also supports OpenAI-compatible APIs via custom base_url.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        if api_key is None and settings.openai_api_key is not None:
            api_key = settings.openai_api_key.get_secret_value()
        if not api_key:
            raise LLMClientError("openai", "OPENAI_API_KEY is not set")
        self._api_key = api_key
        self._base_url = base_url  # None means use OpenAI's default
        self._model = model or settings.openai_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        client_kwargs: dict[str, Any] = {"api_key": self._api_key}
        if self._base_url:
            client_kwargs["base_url"] = self._base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._logger = logger.bind(client="openai", model=self._model)

    def _build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        schema: dict[str, Any],
    ) -> dict[str, Any]:
        """Build chat completion kwargs with a strict json_schema response format."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": schema_name,
                    "strict": True,
                    "schema": schema,
                },
            },
        }
        # Note: GPT-5+ and o-series models use max_completion_tokens
        # and only support the default temperature
        if self._model.startswith(("gpt-5", "o3", "o4")):
            kwargs["max_completion_tokens"] = self._max_tokens
        else:
            kwargs["max_tokens"] = self._max_tokens
            kwargs["temperature"] = self._temperature
        return kwargs

    def _parse_response(
        self, response: openai.types.chat.ChatCompletion
    ) -> OpenAIResponse:
        """Parse OpenAI response into our format."""
        choice = response.choices[0]
        message = choice.message

        if getattr(message, "refusal", None):
            raise LLMClientError("openai", f"Model refused: {message.refusal}")

        stop_reason_map = {
            "stop": "end_turn",
            "length": "max_tokens",
            "content_filter": "content_filter",
        }
        stop_reason = stop_reason_map.get(choice.finish_reason or "stop", "end_turn")

        return OpenAIResponse(
            content=message.content or "",
            stop_reason=stop_reason,
            usage={
                "input_tokens": response.usage.prompt_tokens if response.usage else 0,
                "output_tokens": response.usage.completion_tokens if response.usage else 0,
            },
        )

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        schema: dict[str, Any],
    ) -> OpenAIResponse:
        """Generate a JSON response constrained by ``schema``.

        Args:
            system_prompt: Instructions for the model.
            user_prompt: The request content.
            schema_name: Name reported to the API for the schema.
            schema: Strict JSON schema for the response.

        Returns:
            OpenAIResponse whose content is the raw JSON text.

        Raises:
            LLMClientError: If the API call fails or the model refuses.
        """
        self._logger.debug("generating_structured_response", schema=schema_name)

        kwargs = self._build_request(system_prompt, user_prompt, schema_name, schema)

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise LLMClientError("openai", str(e)) from e

        parsed = self._parse_response(response)

        self._logger.info(
            "response_generated",
            schema=schema_name,
            stop_reason=parsed.stop_reason,
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )

        return parsed
