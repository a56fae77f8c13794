"""
Unit tests for the text generation backends.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from haunt_server.generation import (
    GenerationError,
    OllamaTextGenerator,
    OpenRouterTextGenerator,
    PromptMessage,
    build_text_generator,
)

MESSAGES = [
    PromptMessage(role="system", content="You are the Lights Sub-Agent."),
    PromptMessage(role="user", content="Generate the next spooky command."),
]


class TestOllamaTextGenerator:
    """Test the LangChain Ollama backend."""

    @pytest.mark.asyncio
    async def test_invoke_returns_content(self):
        """Test invoke passes role/content tuples to ChatOllama and returns the text."""
        mock_client = MagicMock()
        mock_client.invoke.return_value = SimpleNamespace(content='{"commandText": "x"}')

        with patch("haunt_server.generation.llm.ChatOllama", return_value=mock_client) as mock_cls:
            generator = OllamaTextGenerator(model="llama3.2", base_url="http://ollama:11434", max_tokens=256)
            result = await generator.invoke(MESSAGES, 0.8)

        assert result == '{"commandText": "x"}'
        mock_cls.assert_called_once_with(
            model="llama3.2", temperature=0.8, num_predict=256, base_url="http://ollama:11434"
        )
        mock_client.invoke.assert_called_once_with([
            ("system", "You are the Lights Sub-Agent."),
            ("user", "Generate the next spooky command."),
        ])

    @pytest.mark.asyncio
    async def test_one_client_per_temperature(self):
        """Test clients are cached per temperature."""
        mock_client = MagicMock()
        mock_client.invoke.return_value = SimpleNamespace(content="ok")

        with patch("haunt_server.generation.llm.ChatOllama", return_value=mock_client) as mock_cls:
            generator = OllamaTextGenerator(model="llama3.2")
            await generator.invoke(MESSAGES, 0.7)
            await generator.invoke(MESSAGES, 0.8)
            await generator.invoke(MESSAGES, 0.8)

        assert mock_cls.call_count == 2
        assert "base_url" not in mock_cls.call_args.kwargs

    @pytest.mark.asyncio
    async def test_runs_in_worker_thread(self):
        """Test the synchronous client call is dispatched through asyncio.to_thread."""
        mock_client = MagicMock()

        async def mock_to_thread(func, *args):
            return SimpleNamespace(content="threaded")

        with patch("haunt_server.generation.llm.ChatOllama", return_value=mock_client):
            with patch("asyncio.to_thread", side_effect=mock_to_thread) as mock_thread:
                result = await OllamaTextGenerator(model="llama3.2").invoke(MESSAGES, 0.7)

        assert result == "threaded"
        assert mock_thread.call_args.args[0] is mock_client.invoke

    @pytest.mark.asyncio
    async def test_empty_response_raises(self):
        mock_client = MagicMock()
        mock_client.invoke.return_value = SimpleNamespace(content="   ")

        with patch("haunt_server.generation.llm.ChatOllama", return_value=mock_client):
            with pytest.raises(GenerationError):
                await OllamaTextGenerator(model="llama3.2").invoke(MESSAGES, 0.7)


def _mock_session(status=200, payload=None, text=""):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload or {})
    response.text = AsyncMock(return_value=text)

    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.post.return_value.__aenter__.return_value = response
    return session


class TestOpenRouterTextGenerator:
    """Test the OpenRouter backend."""

    def test_build_payload(self):
        generator = OpenRouterTextGenerator(api_key="key", model="anthropic/claude-3.5-haiku", max_tokens=300)
        payload = generator._build_payload(MESSAGES, 0.7)

        assert payload["model"] == "anthropic/claude-3.5-haiku"
        assert payload["temperature"] == 0.7
        assert payload["max_tokens"] == 300
        assert payload["messages"][0] == {"role": "system", "content": "You are the Lights Sub-Agent."}

    @pytest.mark.asyncio
    async def test_invoke_returns_first_choice(self):
        generator = OpenRouterTextGenerator(api_key="key", model="m")
        generator.session = _mock_session(payload={"choices": [{"message": {"content": "boo"}}]})

        assert await generator.invoke(MESSAGES, 0.8) == "boo"
        args, kwargs = generator.session.post.call_args
        assert args[0] == "/api/v1/chat/completions"
        assert kwargs["json"]["temperature"] == 0.8

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        generator = OpenRouterTextGenerator(api_key="key", model="m")
        generator.session = _mock_session(status=429, text="rate limited")

        with pytest.raises(GenerationError) as exc_info:
            await generator.invoke(MESSAGES, 0.8)
        assert "429" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_choices_raises(self):
        generator = OpenRouterTextGenerator(api_key="key", model="m")
        generator.session = _mock_session(payload={"choices": []})

        with pytest.raises(GenerationError):
            await generator.invoke(MESSAGES, 0.8)

    @pytest.mark.asyncio
    async def test_close(self):
        generator = OpenRouterTextGenerator(api_key="key", model="m")
        session = _mock_session()
        generator.session = session
        await generator.close()
        session.close.assert_awaited_once()


class TestBuildTextGenerator:

    def _settings(self, **overrides):
        values = dict(
            llm_provider="ollama",
            ollama_model="llama3.2",
            ollama_base_url="http://localhost:11434",
            openrouter_api_key=None,
            openrouter_model="anthropic/claude-3.5-haiku",
            openrouter_url="https://openrouter.ai",
            llm_max_tokens=512,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_ollama_default(self):
        generator = build_text_generator(self._settings())
        assert isinstance(generator, OllamaTextGenerator)
        assert generator.model_name == "llama3.2"

    def test_openrouter(self):
        generator = build_text_generator(self._settings(llm_provider="OpenRouter", openrouter_api_key="key"))
        assert isinstance(generator, OpenRouterTextGenerator)
        assert generator.max_tokens == 512

    def test_openrouter_requires_key(self):
        with pytest.raises(ValueError, match="OPENROUTER_API_KEY"):
            build_text_generator(self._settings(llm_provider="openrouter"))

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            build_text_generator(self._settings(llm_provider="carrier-pigeon"))
