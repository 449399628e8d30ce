"""Fact verification strategies.

Both strategies share one contract, ``await verify(candidate, place_name)``,
and never raise: transport errors, timeouts, malformed JSON and schema
violations all come back as an unverified result with confidence 0.
"""
import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from core.config import ConfigurationError
from facts.models import VerificationResult
from llm.base import LLMRouter
from llm.prompts import build_evidence_prompt, build_self_assessment_prompt

FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class SelfAssessmentPayload(BaseModel):
    confidence: int = Field(ge=0, le=10)
    reason: str = ""


class EvidencePayload(BaseModel):
    verified: bool
    confidence: int = Field(ge=0, le=10)
    reason: str = ""


@dataclass(frozen=True)
class ParseOutcome:
    payload: Optional[BaseModel] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.payload is not None


def extract_json_text(text: str) -> str:
    """Return the first fenced block's contents, or the whole trimmed text."""
    text = text.strip()
    match = FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return text


def parse_verification(text: str, schema: type[BaseModel]) -> ParseOutcome:
    """Parse a verifier response against `schema`.

    Any JSON or schema problem is returned as an error outcome, never raised.
    """
    try:
        data = json.loads(extract_json_text(text))
    except (json.JSONDecodeError, TypeError) as e:
        return ParseOutcome(error=f"invalid JSON: {e}")
    if not isinstance(data, dict):
        return ParseOutcome(error="expected a JSON object")
    try:
        return ParseOutcome(payload=schema.model_validate(data))
    except ValidationError as e:
        return ParseOutcome(error=f"schema violation: {e.error_count()} error(s)")


class BaseVerifier(ABC):
    """Scores a candidate fact's trustworthiness."""

    schema: type[BaseModel] = SelfAssessmentPayload
    allow_search = False
    max_tokens = 100
    tag = "verify"

    def __init__(self, router: LLMRouter, threshold: int, timeout: float = 15.0):
        self.router = router
        self.threshold = threshold
        self.timeout = timeout

    @abstractmethod
    def build_prompt(self, candidate: str, place_name: str) -> str:
        ...

    @abstractmethod
    def decide(self, payload: BaseModel) -> bool:
        """Apply the acceptance rule to a parsed payload."""
        ...

    async def verify(self, candidate: str, place_name: str) -> VerificationResult:
        prompt = self.build_prompt(candidate, place_name)
        try:
            provider = self.router.get_provider()
            text = await asyncio.wait_for(
                provider.complete(
                    prompt, max_tokens=self.max_tokens, allow_search=self.allow_search
                ),
                timeout=self.timeout,
            )
        except ConfigurationError as e:
            logger.error("[VERIFY] Verifier not configured: {}", e)
            return VerificationResult.failed("verifier not configured")
        except asyncio.TimeoutError:
            logger.warning("[VERIFY] Verification timed out after {:.0f}s", self.timeout)
            return VerificationResult.failed("timeout")
        except Exception as e:
            logger.error("[VERIFY] Verification request failed: {}", e)
            return VerificationResult.failed("request failed")

        outcome = parse_verification(text or "", self.schema)
        if not outcome.ok:
            logger.warning("[VERIFY] Unparsable verdict ({}): '{}'", outcome.error, (text or "")[:80])
            return VerificationResult.failed(outcome.error)

        payload = outcome.payload
        verified = self.decide(payload)
        logger.info("[VERIFY] {} confidence={} verified={} ({})",
                    self.tag, payload.confidence, verified, payload.reason[:60])
        return VerificationResult(
            verified=verified, confidence=payload.confidence, reason=payload.reason
        )


class SelfAssessmentVerifier(BaseVerifier):
    """Asks the model to rate its own confidence, with no external lookup."""

    schema = SelfAssessmentPayload
    tag = "self-assessment"

    def __init__(self, router: LLMRouter, threshold: int = 7, timeout: float = 15.0):
        super().__init__(router, threshold, timeout)

    def build_prompt(self, candidate: str, place_name: str) -> str:
        return build_self_assessment_prompt(candidate, place_name)

    def decide(self, payload: SelfAssessmentPayload) -> bool:
        return payload.confidence >= self.threshold


class EvidenceSearchVerifier(BaseVerifier):
    """Lets the model consult external sources before scoring.

    Acceptance needs both the explicit verified flag and the numeric bar.
    """

    schema = EvidencePayload
    allow_search = True
    max_tokens = 1024  # search results and citations count against this
    tag = "evidence-search"

    def __init__(self, router: LLMRouter, threshold: int = 6, timeout: float = 15.0):
        super().__init__(router, threshold, timeout)

    def build_prompt(self, candidate: str, place_name: str) -> str:
        return build_evidence_prompt(candidate, place_name)

    def decide(self, payload: EvidencePayload) -> bool:
        return payload.verified and payload.confidence >= self.threshold


def build_verifier(
    router: LLMRouter, mode: str, threshold: int, timeout: float = 15.0
) -> BaseVerifier:
    """Create the verifier for the configured mode."""
    if mode == "evidence_search":
        return EvidenceSearchVerifier(router, threshold=threshold, timeout=timeout)
    if mode != "self_assessment":
        logger.warning("Unknown verification mode '{}', using self-assessment.", mode)
    return SelfAssessmentVerifier(router, threshold=threshold, timeout=timeout)
