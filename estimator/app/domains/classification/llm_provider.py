from abc import ABC, abstractmethod
from typing import Any

import httpx

from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.classification.llm_provider")


class LLMProviderError(Exception):
    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class LLMProvider(ABC):
    """Chat-completion style language provider."""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> dict[str, Any]:
        """Return ``{"content": <text>}``; raise ``LLMProviderError`` on failure."""
        pass


class OpenAICompatibleProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        api_base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key
        self.api_base_url = api_base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return "openai"

    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> dict[str, Any]:
        if not self.api_key:
            raise LLMProviderError("API key not configured", provider=self.name)

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.api_base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "messages": messages,
                        "temperature": temperature,
                        "max_tokens": max_tokens,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise LLMProviderError(
                f"Request timed out after {self.timeout_seconds}s", provider=self.name
            ) from e
        except httpx.HTTPError as e:
            raise LLMProviderError(f"HTTP error: {e}", provider=self.name) from e
        except ValueError as e:
            raise LLMProviderError(f"Response is not JSON: {e}", provider=self.name) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMProviderError(f"Unexpected response shape: {e}", provider=self.name) from e

        return {"content": content or ""}
