from loguru import logger

from core.config import ConfigurationError, MissingCredentialError
from llm.base import BaseLLM

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 3}


class ClaudeProvider(BaseLLM):
    """Anthropic Claude provider. Supports server-side web search."""

    def __init__(
        self, api_key: str, model: str = "claude-haiku-4-5-20251001", timeout: float = 15.0
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            # Retries are bounded by the acquisition loop, not the SDK
            self._client = AsyncAnthropic(
                api_key=self.api_key, timeout=self.timeout, max_retries=0
            )

    @property
    def supports_search(self) -> bool:
        return True

    async def complete(
        self, prompt: str, max_tokens: int = 150, allow_search: bool = False
    ) -> str:
        if not self.api_key:
            logger.error("Claude API key not configured.")
            raise MissingCredentialError("anthropic")

        self._ensure_client()

        import anthropic

        kwargs = {}
        if allow_search:
            kwargs["tools"] = [WEB_SEARCH_TOOL]

        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise ConfigurationError("Anthropic rejected the configured credential") from e

        # The answer is every text block after the last search result;
        # citations split it into several blocks.
        blocks = response.content
        last_result = max(
            (i for i, block in enumerate(blocks) if block.type == "web_search_tool_result"),
            default=-1,
        )
        texts = [block.text for block in blocks[last_result + 1:] if block.type == "text"]
        return "".join(texts).strip()
