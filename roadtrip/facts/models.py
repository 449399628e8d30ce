from dataclasses import dataclass
from enum import Enum


class AcquisitionPhase(str, Enum):
    ATTEMPTING = "attempting"
    VERIFIED = "verified"      # A candidate passed verification
    EXHAUSTED = "exhausted"    # All attempts failed, fallback returned
    ABORTED = "aborted"        # Configuration error, fallback returned


@dataclass(frozen=True)
class FactRequest:
    place_name: str
    is_destination: bool = False

    @property
    def short_name(self) -> str:
        return self.place_name.split(",")[0].strip()


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    confidence: int = 0
    reason: str = ""

    @classmethod
    def failed(cls, reason: str) -> "VerificationResult":
        return cls(verified=False, confidence=0, reason=reason)


@dataclass(frozen=True)
class AcquiredFact:
    text: str
    verified: bool
    attempts: int = 0
    outcome: AcquisitionPhase = AcquisitionPhase.VERIFIED

    @property
    def is_fallback(self) -> bool:
        return not self.verified
