"""Tests for the structured generation client.

All tests are deterministic and do not make real network calls.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError
from pydantic import BaseModel

from backend.app.config import Settings
from backend.app.llm.client import (
    DeterministicStubClient,
    LLMOutputError,
    LLMUnavailableError,
    OpenAIClient,
    generate_structured,
    get_llm_client,
    parse_structured,
)


class _Answer(BaseModel):
    task: str
    confidence: float


def _mock_openai(content: str | None) -> AsyncMock:
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = content

    mock_openai_client = AsyncMock()
    mock_openai_client.chat.completions.create = AsyncMock(return_value=mock_response)
    return mock_openai_client


@pytest.mark.asyncio
async def test_stub_client_is_unavailable() -> None:
    """Test that the stub never invents content."""
    client = DeterministicStubClient()

    with pytest.raises(LLMUnavailableError):
        await client.generate("anything", schema={}, system_prompt="system")


@pytest.mark.asyncio
async def test_openai_client_requests_json_schema_output() -> None:
    """Test that OpenAIClient calls the API with the schema and returns the text."""
    client = OpenAIClient(api_key="test_key")
    client.client = _mock_openai('{"task": "undo", "confidence": 0.9}')
    schema = _Answer.model_json_schema()

    text = await client.generate("undo that", schema=schema, system_prompt="Classify.")

    assert text == '{"task": "undo", "confidence": 0.9}'
    client.client.chat.completions.create.assert_called_once()
    kwargs = client.client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"][0] == {"role": "system", "content": "Classify."}
    assert kwargs["messages"][1] == {"role": "user", "content": "undo that"}
    assert kwargs["response_format"]["json_schema"]["schema"] == schema


@pytest.mark.asyncio
async def test_openai_client_maps_provider_errors() -> None:
    """Test that API failures surface as LLMUnavailableError."""
    mock_openai_client = AsyncMock()
    mock_openai_client.chat.completions.create = AsyncMock(side_effect=OpenAIError("API error"))

    client = OpenAIClient(api_key="test_key")
    client.client = mock_openai_client

    with pytest.raises(LLMUnavailableError):
        await client.generate("hello", schema={}, system_prompt="system")


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", None])
async def test_openai_client_rejects_empty_response(content: str | None) -> None:
    """Test that empty content is an output error, not an empty answer."""
    client = OpenAIClient(api_key="test_key")
    client.client = _mock_openai(content)

    with pytest.raises(LLMOutputError):
        await client.generate("hello", schema={}, system_prompt="system")


def test_parse_structured_validates_against_model() -> None:
    answer = parse_structured('{"task": "edit", "confidence": 0.5}', _Answer)

    assert answer == _Answer(task="edit", confidence=0.5)


@pytest.mark.parametrize("text", ["not json", '{"task": "edit"}', "[]"])
def test_parse_structured_rejects_malformed_output(text: str) -> None:
    with pytest.raises(LLMOutputError):
        parse_structured(text, _Answer)


@pytest.mark.asyncio
async def test_generate_structured_passes_model_schema(make_llm) -> None:
    """Test that generate_structured sends the prompt and parses the reply."""
    llm = make_llm('{"task": "explain", "confidence": 0.75}')

    answer = await generate_structured(llm, "what's on day 2?", _Answer, system_prompt="s")

    assert answer.task == "explain"
    assert llm.prompts == ["what's on day 2?"]


def test_get_llm_client_returns_stub_when_no_api_key() -> None:
    """Test that get_llm_client returns stub when no API key configured."""
    settings = Settings(_env_file=None, openai_api_key=None)

    assert isinstance(get_llm_client(settings), DeterministicStubClient)


def test_get_llm_client_returns_openai_when_api_key_present() -> None:
    """Test that get_llm_client returns OpenAI client when key present."""
    settings = Settings(_env_file=None, openai_api_key="test_key", openai_model="gpt-4o")

    client = get_llm_client(settings)

    assert isinstance(client, OpenAIClient)
    assert client.model == "gpt-4o"
