from abc import ABC, abstractmethod

from loguru import logger

from core.config import PROVIDER_CREDENTIALS, ConfigManager


class BaseLLM(ABC):
    """Abstract base class for all cloud LLM providers."""

    api_key: str = ""

    @abstractmethod
    async def complete(
        self, prompt: str, max_tokens: int = 150, allow_search: bool = False
    ) -> str:
        """Return the full text response for a single user prompt.

        Args:
            prompt: The user message.
            max_tokens: Upper bound on response length.
            allow_search: Let the provider consult external sources before
                answering. Providers without a search tool answer directly.

        Raises:
            ConfigurationError: the provider has no usable credential.
            Any transport error from the SDK. Callers absorb these.
        """
        ...

    @property
    def supports_search(self) -> bool:
        return False


class LLMRouter:
    """Routes LLM requests to the provider selected in config."""

    def __init__(self, config_manager: ConfigManager, timeout: float = 15.0):
        self.config_manager = config_manager
        self.timeout = timeout
        self._providers: dict[str, BaseLLM] = {}

    def _get_provider(self, name: str) -> BaseLLM:
        """Get or create a cloud LLM provider.

        Re-reads the API key from config each time so that key updates
        via the settings API take effect without restart.
        """
        current_key = self.config_manager.api_key(PROVIDER_CREDENTIALS.get(name, name))

        # Recreate the provider if the key changed or first time
        cached = self._providers.get(name)
        if cached is not None and getattr(cached, "api_key", None) == current_key:
            return cached

        if name == "claude":
            from llm.providers.claude_provider import ClaudeProvider
            self._providers[name] = ClaudeProvider(api_key=current_key, timeout=self.timeout)
        elif name == "openai":
            from llm.providers.openai_provider import OpenAIProvider
            self._providers[name] = OpenAIProvider(api_key=current_key, timeout=self.timeout)
        elif name == "gemini":
            from llm.providers.gemini_provider import GeminiProvider
            self._providers[name] = GeminiProvider(api_key=current_key)
        else:
            raise ValueError(f"Unknown LLM provider: {name}")

        logger.info("Provider '{}' initialized.", name)
        return self._providers[name]

    def get_provider(self) -> BaseLLM:
        """Get the active LLM provider based on current settings."""
        return self._get_provider(self.config_manager.config.provider)
