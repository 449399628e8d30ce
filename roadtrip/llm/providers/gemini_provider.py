from loguru import logger

from core.config import ConfigurationError, MissingCredentialError
from llm.base import BaseLLM


class GeminiProvider(BaseLLM):
    """Google Gemini provider."""

    def __init__(self, api_key: str, model: str = "gemini-1.5-flash"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            import google.generativeai as genai
            genai.configure(api_key=self.api_key)
            self._client = genai.GenerativeModel(self.model)

    async def complete(
        self, prompt: str, max_tokens: int = 150, allow_search: bool = False
    ) -> str:
        if not self.api_key:
            logger.error("Gemini API key not configured.")
            raise MissingCredentialError("gemini")

        if allow_search:
            logger.debug("Gemini provider has no search tool; answering directly.")

        self._ensure_client()

        from google.api_core import exceptions as google_exceptions

        try:
            response = await self._client.generate_content_async(
                prompt,
                generation_config={
                    "max_output_tokens": max_tokens,
                    "temperature": 0.4,
                },
            )
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as e:
            raise ConfigurationError("Gemini rejected the configured credential") from e
        return (response.text or "").strip()
