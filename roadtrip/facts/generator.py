import asyncio
import time
from typing import Optional

from loguru import logger

from core.config import ConfigurationError
from facts.models import FactRequest
from llm.base import LLMRouter
from llm.prompts import build_fact_prompt


class FactGenerator:
    """Produces one candidate fact string for a place."""

    def __init__(self, router: LLMRouter, timeout: float = 15.0, max_tokens: int = 150):
        self.router = router
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def generate(self, request: FactRequest) -> Optional[str]:
        """Generate a candidate fact.

        Returns None on any transport, timeout or empty-response failure.
        Only ConfigurationError propagates, so the caller can stop retrying.
        """
        prompt = build_fact_prompt(request.place_name, request.is_destination)
        t0 = time.monotonic()
        try:
            provider = self.router.get_provider()
            text = await asyncio.wait_for(
                provider.complete(prompt, max_tokens=self.max_tokens),
                timeout=self.timeout,
            )
        except ConfigurationError:
            raise
        except asyncio.TimeoutError:
            logger.warning("[FACT] Generation timed out after {:.0f}s for '{}'",
                           self.timeout, request.short_name)
            return None
        except Exception as e:
            logger.error("[FACT] Generation failed for '{}': {}", request.short_name, e)
            return None

        logger.info("[TIMING] Fact generation: {:.1f}s", time.monotonic() - t0)
        if not text:
            logger.warning("[FACT] Empty candidate for '{}'", request.short_name)
            return None
        return text
