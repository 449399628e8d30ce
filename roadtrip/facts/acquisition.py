import time
from dataclasses import dataclass, replace
from typing import Optional

from loguru import logger

from core.config import ConfigurationError
from facts.generator import FactGenerator
from facts.models import AcquiredFact, AcquisitionPhase, FactRequest
from facts.verifier import BaseVerifier

MAX_ATTEMPTS = 3


def fallback_fact(request: FactRequest) -> str:
    """Deterministic, still-narratable placeholder used when no fact verified."""
    city = request.short_name
    if request.is_destination:
        return (
            f"🚗 You're heading to {city}! Keep your eyes open for cool things on your "
            "adventure. What do you think you'll see there?"
        )
    return (
        f"🚗 You're in {city}! Keep your eyes open for cool things on your adventure. "
        "What do you see outside?"
    )


@dataclass(frozen=True)
class AcquisitionState:
    request: FactRequest
    phase: AcquisitionPhase = AcquisitionPhase.ATTEMPTING
    attempt: int = 0
    fact: Optional[AcquiredFact] = None


class FactAcquisitionOrchestrator:
    """Bounded generate + verify loop.

    States: Attempting(n) -> Verified | Exhausted | Aborted. Each step makes
    at most one generator call and one verifier call, and the loop stops at
    the first verified candidate.
    """

    def __init__(
        self,
        generator: FactGenerator,
        verifier: BaseVerifier,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.generator = generator
        self.verifier = verifier
        self.max_attempts = max_attempts

    async def acquire_fact(self, place_name: str, is_destination: bool = False) -> AcquiredFact:
        """Return a verified fact, or the fallback. Never raises."""
        state = AcquisitionState(request=FactRequest(place_name, is_destination))
        t0 = time.monotonic()
        while state.phase == AcquisitionPhase.ATTEMPTING:
            state = await self._step(state)

        logger.info("[FACT] '{}' -> {} after {} attempt(s) in {:.1f}s",
                    state.request.short_name, state.phase.value, state.attempt,
                    time.monotonic() - t0)
        return state.fact

    async def _step(self, state: AcquisitionState) -> AcquisitionState:
        if state.attempt >= self.max_attempts:
            return self._finish(state, AcquisitionPhase.EXHAUSTED)

        state = replace(state, attempt=state.attempt + 1)
        request = state.request
        logger.debug("[FACT] Attempt {}/{} for '{}'",
                     state.attempt, self.max_attempts, request.short_name)

        try:
            candidate = await self.generator.generate(request)
        except ConfigurationError as e:
            # Retrying cannot fix a missing credential
            logger.error("[FACT] Aborting acquisition: {}", e)
            return self._finish(state, AcquisitionPhase.ABORTED)
        except Exception as e:
            logger.error("[FACT] Unexpected generator error: {}", e)
            candidate = None

        if not candidate:
            return state

        try:
            result = await self.verifier.verify(candidate, request.place_name)
        except Exception as e:
            logger.error("[FACT] Unexpected verifier error: {}", e)
            return state

        if result.verified:
            fact = AcquiredFact(
                text=candidate,
                verified=True,
                attempts=state.attempt,
                outcome=AcquisitionPhase.VERIFIED,
            )
            return replace(state, phase=AcquisitionPhase.VERIFIED, fact=fact)

        logger.info("[FACT] Attempt {} rejected (confidence {}): {}",
                    state.attempt, result.confidence, result.reason[:60])
        return state

    @staticmethod
    def _finish(state: AcquisitionState, phase: AcquisitionPhase) -> AcquisitionState:
        fact = AcquiredFact(
            text=fallback_fact(state.request),
            verified=False,
            attempts=state.attempt,
            outcome=phase,
        )
        return replace(state, phase=phase, fact=fact)
