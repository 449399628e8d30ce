import asyncio
import time
from typing import Callable, Optional

from loguru import logger

from audio.narration import NarrationQueue
from core.config import ConfigurationError, TriggerConfig
from core.state import NarratorState, SharedState
from facts.acquisition import FactAcquisitionOrchestrator
from facts.models import AcquiredFact
from trip.announcements import arrival_announcement, progress_announcement, trip_announcement
from trip.geo import Destination, RouteProgress, place_from_address, short_place_name
from trip.positions import PositionFeed
from trip.scheduler import TriggerScheduler


class TripSession:
    """One active trip.

    Owns the TriggerState (through its scheduler) for the lifetime of the
    trip. The destination fact is acquired and narrated first; position-based
    triggers are enabled only after that.
    """

    def __init__(
        self,
        destination: Destination,
        route: Optional[RouteProgress],
        *,
        acquirer: FactAcquisitionOrchestrator,
        narration: NarrationQueue,
        geocoder,
        positions: PositionFeed,
        state: SharedState,
        config: TriggerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.destination = destination
        self.route = route
        self.acquirer = acquirer
        self.narration = narration
        self.geocoder = geocoder
        self.positions = positions
        self.state = state
        self.config = config

        self.current_fact: Optional[AcquiredFact] = None
        self.destination_place: Optional[str] = None
        self.scheduler = TriggerScheduler(
            positions=positions,
            geocoder=geocoder,
            acquire=self._acquire,
            on_fact=self._on_fact,
            config=config,
            clock=clock,
        )
        self._intro_task: Optional[asyncio.Task] = None
        self._ended = False
        self.initial_fact_done = asyncio.Event()

    def start(self) -> None:
        self.state.destination_name = self.destination.display_name
        self.state.set_state(NarratorState.ANNOUNCING)
        self.scheduler.start()
        self._intro_task = asyncio.create_task(self._introduce())

    async def end(self, stop_narration: bool = True) -> None:
        self._ended = True
        if self._intro_task is not None and not self._intro_task.done():
            self._intro_task.cancel()
            await asyncio.gather(self._intro_task, return_exceptions=True)
        await self.scheduler.stop()
        self.scheduler.reset()
        if stop_narration:
            self.narration.stop()
        logger.info("Trip to {} ended.", self.destination.display_name)

    async def _introduce(self) -> None:
        """Announce the trip, then narrate the destination fact."""
        fact_task = None
        try:
            place = await self._resolve_destination_place()
            self.destination_place = place
            fact_task = asyncio.create_task(self._acquire(place, True))

            if self.route is not None:
                await self._say(trip_announcement(
                    self.destination.display_name,
                    self.route.duration_minutes,
                    self.route.distance_miles,
                ))
                await asyncio.sleep(self.config.announcement_gap_seconds)

            fact = await fact_task
            self._set_fact(fact, short_place_name(place))
            self.scheduler.record_acquisition(place, self.positions.latest)
            await self._say(fact.text)
        except asyncio.CancelledError:
            if fact_task is not None:
                fact_task.cancel()
            raise
        except Exception as e:
            logger.error("Trip introduction failed: {}", e)
            self.state.last_error = str(e)
        finally:
            self.initial_fact_done.set()
            if not self._ended:
                self.scheduler.enabled = True
                self.state.set_state(NarratorState.TRACKING)
                logger.info("[TRIGGER] Position triggers enabled for trip to {}.",
                            self.destination.display_name)

    async def _resolve_destination_place(self) -> str:
        try:
            place = await self.geocoder.place_name(self.destination.coordinates)
        except ConfigurationError as e:
            logger.warning("Destination lookup unavailable: {}", e)
            place = None
        except Exception as e:
            logger.warning("Destination lookup failed: {}", e)
            place = None
        return place or place_from_address(self.destination.name)

    async def _acquire(self, place_name: str, is_destination: bool) -> AcquiredFact:
        self.state.set_state(NarratorState.ACQUIRING)
        try:
            return await self.acquirer.acquire_fact(place_name, is_destination)
        finally:
            if not self._ended:
                self.state.set_state(
                    NarratorState.TRACKING if self.scheduler.enabled else NarratorState.ANNOUNCING
                )

    def _set_fact(self, fact: AcquiredFact, place: str) -> None:
        self.current_fact = fact
        self.state.current_fact = fact.text
        self.state.current_fact_verified = fact.verified
        self.state.current_place = place
        self.state.facts_narrated += 1

    def _on_fact(self, fact: AcquiredFact, place: str) -> None:
        self._set_fact(fact, place)
        self._narrate(fact.text)

    def _narrate(self, text: str) -> asyncio.Future:
        """Queue narration without waiting for it."""
        future = self.narration.speak(text)
        future.add_done_callback(_log_narration_failure)
        return future

    async def _say(self, text: str) -> None:
        """Queue narration and wait until it finished or was superseded."""
        try:
            await self._narrate(text)
        except Exception as e:
            logger.error("Narration failed: {}", e)

    # --- User actions ---

    def read_aloud(self) -> Optional[asyncio.Future]:
        if self.current_fact is None:
            return None
        return self._narrate(self.current_fact.text)

    def announce_progress(self) -> Optional[asyncio.Future]:
        if self.route is None:
            return None
        return self._narrate(
            progress_announcement(self.route.duration_minutes, self.route.distance_miles)
        )

    def announce_arrival(self) -> asyncio.Future:
        return self._narrate(arrival_announcement(self.destination.display_name))

    def update_route(self, route: RouteProgress) -> None:
        self.route = route


def _log_narration_failure(future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.error("[NARRATE] Narration failed: {}", future.exception())


class TripController:
    """Holds the single active TripSession."""

    def __init__(
        self,
        *,
        acquirer: FactAcquisitionOrchestrator,
        narration: NarrationQueue,
        geocoder,
        positions: PositionFeed,
        state: SharedState,
        config: TriggerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.acquirer = acquirer
        self.narration = narration
        self.geocoder = geocoder
        self.positions = positions
        self.state = state
        self.config = config
        self.clock = clock
        self.session: Optional[TripSession] = None

    async def start_trip(
        self, destination: Destination, route: Optional[RouteProgress] = None
    ) -> TripSession:
        """Start a trip, replacing any active one."""
        if self.session is not None:
            if self.session.destination.id == destination.id:
                if route is not None:
                    self.session.update_route(route)
                return self.session
            await self.end_trip()

        logger.info("Trip started to {}.", destination.display_name)
        self.session = TripSession(
            destination,
            route,
            acquirer=self.acquirer,
            narration=self.narration,
            geocoder=self.geocoder,
            positions=self.positions,
            state=self.state,
            config=self.config,
            clock=self.clock,
        )
        self.session.start()
        return self.session

    async def end_trip(self, stop_narration: bool = True) -> None:
        """End the active trip. Narration already queued keeps playing when
        ``stop_narration`` is False."""
        session, self.session = self.session, None
        if session is not None:
            await session.end(stop_narration)
        self.state.clear_trip()
