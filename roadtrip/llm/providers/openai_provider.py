from loguru import logger

from core.config import ConfigurationError, MissingCredentialError
from llm.base import BaseLLM


class OpenAIProvider(BaseLLM):
    """OpenAI ChatGPT provider."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 15.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.api_key, timeout=self.timeout, max_retries=0
            )

    async def complete(
        self, prompt: str, max_tokens: int = 150, allow_search: bool = False
    ) -> str:
        if not self.api_key:
            logger.error("OpenAI API key not configured.")
            raise MissingCredentialError("openai")

        if allow_search:
            logger.debug("OpenAI provider has no search tool; answering directly.")

        self._ensure_client()

        import openai

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=0.4,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ConfigurationError("OpenAI rejected the configured credential") from e

        message = response.choices[0].message if response.choices else None
        return (message.content or "").strip() if message else ""
