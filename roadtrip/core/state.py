import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class NarratorState(str, Enum):
    IDLE = "idle"              # No active trip
    ANNOUNCING = "announcing"  # Trip started, destination fact pending
    TRACKING = "tracking"      # Watching positions for triggers
    ACQUIRING = "acquiring"    # Generate + verify in flight
    ERROR = "error"            # Something went wrong


@dataclass
class SharedState:
    """Shared runtime state read by the API and written by the trip session."""

    narrator_state: NarratorState = NarratorState.IDLE
    active_provider: str = "claude"

    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    # Current trip info (ephemeral, not persisted)
    destination_name: Optional[str] = None
    current_place: Optional[str] = None
    current_fact: Optional[str] = None
    current_fact_verified: bool = False
    facts_narrated: int = 0
    last_error: Optional[str] = None

    def set_state(self, state: NarratorState) -> None:
        self.narrator_state = state

    def clear_trip(self) -> None:
        self.destination_name = None
        self.current_place = None
        self.current_fact = None
        self.current_fact_verified = False
        self.facts_narrated = 0
        self.set_state(NarratorState.IDLE)

    def request_stop(self) -> None:
        self.stop_event.set()

    @property
    def is_running(self) -> bool:
        return not self.stop_event.is_set()

    @property
    def trip_active(self) -> bool:
        return self.narrator_state != NarratorState.IDLE
