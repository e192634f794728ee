"""LLM client for structured generation with OpenAI integration.

Security: Reads API key from settings only, never hardcoded.
Without a key the deterministic stub is used; it raises LLMUnavailableError so
callers degrade to their rule-based paths instead of inventing content.
"""

import json
import logging
from typing import Any, Protocol, TypeVar

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from backend.app.config import Settings, get_settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class LLMError(Exception):
    """Base class for structured generation failures."""


class LLMUnavailableError(LLMError):
    """No provider configured, or the provider could not be reached."""


class LLMOutputError(LLMError):
    """The provider answered, but not with content matching the schema."""


class StructuredGenerationClient(Protocol):
    """Protocol for structured generation implementations."""

    async def generate(
        self, prompt: str, *, schema: dict[str, Any], system_prompt: str
    ) -> str:
        """Generate text (a JSON document) conforming to `schema`.

        Args:
            prompt: User-facing task description with context
            schema: JSON schema the output must satisfy
            system_prompt: Instructions constraining the model

        Returns:
            Raw text of the JSON document

        Raises:
            LLMError: On provider failure or empty output
        """
        ...


class DeterministicStubClient:
    """Stub client for running without an API key (tests, local dev)."""

    async def generate(
        self, prompt: str, *, schema: dict[str, Any], system_prompt: str
    ) -> str:
        raise LLMUnavailableError("No language model is configured")


class OpenAIClient:
    """OpenAI-backed structured generation."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 20.0):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from settings)
            model: Model name to use (default: gpt-4o-mini for cost efficiency)
            timeout: Per-request timeout in seconds
        """
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.model = model

    async def generate(
        self, prompt: str, *, schema: dict[str, Any], system_prompt: str
    ) -> str:
        """Generate a JSON document using the json_schema response format."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "proposal", "schema": schema},
                },
                temperature=0.2,
                max_tokens=2000,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI API call failed: {e}")
            raise LLMUnavailableError(str(e)) from e

        content = response.choices[0].message.content or ""

        # Validation: Check for empty response
        if not content.strip():
            logger.warning("OpenAI returned empty response")
            raise LLMOutputError("The language model returned an empty response")

        return content


def parse_structured(text: str, model: type[ModelT]) -> ModelT:
    """Parse generated JSON into `model`.

    Raises:
        LLMOutputError: If the text is not JSON or does not match the model
    """
    try:
        return model.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        raise LLMOutputError(f"Malformed output for {model.__name__}: {e}") from e


async def generate_structured(
    client: StructuredGenerationClient,
    prompt: str,
    model: type[ModelT],
    *,
    system_prompt: str,
) -> ModelT:
    """Generate and parse into a pydantic model in one step."""
    text = await client.generate(
        prompt, schema=model.model_json_schema(), system_prompt=system_prompt
    )
    return parse_structured(text, model)


def get_llm_client(settings: Settings | None = None) -> StructuredGenerationClient:
    """Factory function to get appropriate client based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    settings = settings or get_settings()
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for structured generation")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            model=settings.openai_model,
            timeout=settings.llm_timeout_seconds,
        )
    else:
        logger.warning("No OpenAI API key configured, using deterministic stub client")
        return DeterministicStubClient()
