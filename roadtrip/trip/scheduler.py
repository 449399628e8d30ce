import asyncio
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional

from loguru import logger

from core.config import ConfigurationError, TriggerConfig
from facts.models import AcquiredFact
from trip.geo import Coordinates, haversine_miles, short_place_name
from trip.positions import PositionFeed, PositionSubscription


class TriggerReason(str, Enum):
    PLACE = "place"
    TIME = "time"
    DISTANCE = "distance"


@dataclass(frozen=True)
class TriggerState:
    """What the last completed acquisition looked like.

    Deltas are always measured against these values, never against the
    previous check.
    """

    last_place: Optional[str] = None
    last_fact_timestamp: Optional[float] = None
    last_fact_position: Optional[Coordinates] = None


def evaluate_triggers(
    state: TriggerState,
    place: Optional[str],
    position: Optional[Coordinates],
    now: float,
    config: TriggerConfig,
) -> Optional[TriggerReason]:
    """Decide whether a new acquisition should start.

    Args:
        state: The last completed acquisition.
        place: Short name of the current place, or None if unknown.
        position: Current position, or None if unknown.
        now: Current clock reading, same clock as state.last_fact_timestamp.
        config: Thresholds.
    """
    if place is not None and place != state.last_place:
        return TriggerReason.PLACE

    if state.last_fact_timestamp is None:
        return TriggerReason.TIME
    if now - state.last_fact_timestamp >= config.time_threshold_seconds:
        return TriggerReason.TIME

    if position is not None and state.last_fact_position is not None:
        miles = haversine_miles(state.last_fact_position, position)
        if miles >= config.distance_threshold_miles:
            return TriggerReason.DISTANCE

    return None


AcquireFn = Callable[[str, bool], Awaitable[AcquiredFact]]
FactCallback = Callable[[AcquiredFact, str], None]


class TriggerScheduler:
    """Starts fact acquisitions from the live position stream.

    Position events are debounced, and a background timer re-checks the
    time trigger so a stationary car still gets facts. Only one evaluation
    and acquisition runs at a time; evaluations arriving meanwhile are
    dropped.
    """

    def __init__(
        self,
        positions: PositionFeed,
        geocoder,
        acquire: AcquireFn,
        on_fact: FactCallback,
        config: TriggerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.positions = positions
        self.geocoder = geocoder
        self.acquire = acquire
        self.on_fact = on_fact
        self.config = config
        self.clock = clock

        self.state = TriggerState()
        self.enabled = False  # Set once the destination's own fact is done
        self.dropped = 0

        self._in_flight = False
        self._latest_position: Optional[Coordinates] = None
        self._last_full_place: Optional[str] = None
        self._subscription: Optional[PositionSubscription] = None
        self._loops: list[asyncio.Task] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def latest_position(self) -> Optional[Coordinates]:
        return self._latest_position or self.positions.latest

    def start(self) -> None:
        """Subscribe to positions and start the recheck timer."""
        if self._subscription is not None:
            return
        self._subscription = self.positions.subscribe()
        self._loops = [
            asyncio.create_task(self._watch_positions(self._subscription)),
            asyncio.create_task(self._recheck_loop()),
        ]
        logger.debug("[TRIGGER] Scheduler started.")

    async def stop(self) -> None:
        """Unsubscribe and cancel all pending work. Safe to call twice."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        pending = self._loops + list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._loops = []
        self._tasks.clear()
        self.enabled = False
        logger.debug("[TRIGGER] Scheduler stopped.")

    def reset(self) -> None:
        self.state = TriggerState()
        self.enabled = False
        self._last_full_place = None

    def record_acquisition(
        self, place_name: Optional[str], position: Optional[Coordinates]
    ) -> None:
        """Update state after an acquisition completes."""
        now = self.clock()
        previous = self.state.last_fact_timestamp
        if previous is not None and now < previous:
            now = previous
        if place_name:
            self._last_full_place = place_name
        self.state = replace(
            self.state,
            last_place=short_place_name(place_name) if place_name else self.state.last_place,
            last_fact_timestamp=now,
            last_fact_position=position or self.state.last_fact_position,
        )

    async def evaluate(
        self, position: Optional[Coordinates] = None, check_place: bool = True
    ) -> Optional[TriggerReason]:
        """Evaluate triggers and, if one fires, acquire and hand off a fact.

        Returns the reason that fired, or None.
        """
        if not self.enabled:
            return None
        if self._in_flight:
            self.dropped += 1
            logger.debug("[TRIGGER] Evaluation dropped, acquisition in flight.")
            return None

        self._in_flight = True
        try:
            position = position or self.latest_position
            full_place = await self._lookup_place(position) if check_place else None
            short = short_place_name(full_place) if full_place else None

            reason = evaluate_triggers(self.state, short, position, self.clock(), self.config)
            if reason is None:
                return None

            place_for_fact = full_place or self._last_full_place
            if not place_for_fact:
                logger.debug("[TRIGGER] {} fired but no place is known yet.", reason.value)
                return None

            logger.info("[TRIGGER] {} trigger fired for '{}'",
                        reason.value, short_place_name(place_for_fact))
            fact = await self.acquire(place_for_fact, False)
            # Fallback facts (EXHAUSTED or ABORTED) advance the state as well,
            # so a place that keeps failing waits for the next threshold.
            self.record_acquisition(place_for_fact, position)
            self.on_fact(fact, short_place_name(place_for_fact))
            return reason
        finally:
            self._in_flight = False

    async def _lookup_place(self, position: Optional[Coordinates]) -> Optional[str]:
        if position is None:
            return None
        try:
            return await self.geocoder.place_name(position)
        except ConfigurationError as e:
            logger.warning("[TRIGGER] Place lookup unavailable: {}", e)
        except Exception as e:
            logger.warning("[TRIGGER] Place lookup failed: {}", e)
        return None

    async def _watch_positions(self, subscription: PositionSubscription) -> None:
        """Coalesce bursts of position updates, evaluating only the last one."""
        debounce = self.config.position_debounce_seconds
        pending: Optional[Coordinates] = None
        while True:
            if pending is None:
                pending = await subscription.get()
                if pending is None:
                    return
            try:
                newer = await asyncio.wait_for(subscription.get(), timeout=debounce)
            except asyncio.TimeoutError:
                self._latest_position = pending
                self._spawn(self.evaluate(pending))
                pending = None
                continue
            if newer is None:
                return
            pending = newer

    async def _recheck_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.recheck_interval_seconds)
            try:
                await self.evaluate(check_place=False)
            except Exception as e:
                logger.error("[TRIGGER] Periodic check failed: {}", e)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[TRIGGER] Evaluation failed: {}", task.exception())
