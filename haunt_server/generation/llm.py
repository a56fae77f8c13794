"""
Text generation boundary.

The orchestrator only ever sees `TextGenerator.invoke(messages, temperature)`.
Two backends are provided: a local Ollama model through LangChain, and the
hosted OpenRouter chat-completions API over aiohttp.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Literal, Optional

import aiohttp
from langchain_ollama import ChatOllama
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    """Raised when the text generation backend fails or returns nothing usable."""


class PromptMessage(BaseModel):
    """A single chat message sent to the text generator."""
    role: Literal["system", "user", "assistant"]
    content: str


class TextGenerator(ABC):
    """Abstract text generation interface."""

    @abstractmethod
    async def invoke(self, messages: List[PromptMessage], temperature: float) -> str:
        """
        Generate a completion for an ordered list of chat messages.

        Raises:
            GenerationError (or any transport error) on failure.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


class OllamaTextGenerator(TextGenerator):
    """
    Ollama-backed generator.

    ChatOllama binds temperature at construction, so one client is kept per
    temperature actually requested.
    """

    def __init__(
        self,
        model: str,
        base_url: Optional[str] = None,
        max_tokens: int = 512,
    ):
        self.model_name = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self._clients: Dict[float, ChatOllama] = {}

    def _client_for(self, temperature: float) -> ChatOllama:
        client = self._clients.get(temperature)
        if client is None:
            kwargs: Dict[str, Any] = {
                "model": self.model_name,
                "temperature": temperature,
                "num_predict": self.max_tokens,
            }
            if self.base_url:
                kwargs["base_url"] = self.base_url
            client = ChatOllama(**kwargs)
            self._clients[temperature] = client
        return client

    async def invoke(self, messages: List[PromptMessage], temperature: float) -> str:
        client = self._client_for(temperature)
        payload = [(m.role, m.content) for m in messages]

        # ChatOllama.invoke() is synchronous; run in thread to avoid blocking
        response = await asyncio.to_thread(client.invoke, payload)
        content = getattr(response, "content", response)
        if not isinstance(content, str):
            content = str(content)
        if not content.strip():
            raise GenerationError(f"Ollama model {self.model_name!r} returned an empty response")
        return content


class OpenRouterTextGenerator(TextGenerator):
    """Generator backed by the OpenRouter chat-completions API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai",
        max_tokens: int = 512,
    ):
        self.api_key = api_key
        self.model_name = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "X-Title": "Haunted Home Orchestrator",
                },
            )
        return self.session

    async def close(self) -> None:
        """Close aiohttp session."""
        if self.session and not self.session.closed:
            await self.session.close()

    def _build_payload(self, messages: List[PromptMessage], temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model_name,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
            "max_tokens": self.max_tokens,
        }

    async def invoke(self, messages: List[PromptMessage], temperature: float) -> str:
        session = await self._get_session()
        payload = self._build_payload(messages, temperature)

        async with session.post("/api/v1/chat/completions", json=payload) as response:
            if response.status != 200:
                error_text = await response.text()
                raise GenerationError(f"OpenRouter API error: {response.status} - {error_text}")
            data = await response.json()

        choices = data.get("choices") or []
        if not choices:
            raise GenerationError("No response from OpenRouter API")
        return choices[0].get("message", {}).get("content") or ""


def build_text_generator(app_settings) -> TextGenerator:
    """Create the configured text generator backend."""
    provider = app_settings.llm_provider.lower()
    if provider == "openrouter":
        if not app_settings.openrouter_api_key:
            raise ValueError("OPENROUTER_API_KEY must be set when HAUNT_LLM_PROVIDER=openrouter")
        return OpenRouterTextGenerator(
            api_key=app_settings.openrouter_api_key,
            model=app_settings.openrouter_model,
            base_url=app_settings.openrouter_url,
            max_tokens=app_settings.llm_max_tokens,
        )
    if provider == "ollama":
        return OllamaTextGenerator(
            model=app_settings.ollama_model,
            base_url=app_settings.ollama_base_url,
            max_tokens=app_settings.llm_max_tokens,
        )
    raise ValueError(f"Unknown LLM provider: {app_settings.llm_provider!r}")
