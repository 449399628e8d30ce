"""Tests for trip tracking: geo helpers, positions, triggers and sessions."""
import asyncio

import pytest

from core.config import MissingCredentialError, TriggerConfig
from core.state import NarratorState, SharedState
from facts.models import AcquiredFact, AcquisitionPhase
from trip.announcements import (
    arrival_announcement,
    format_time_left,
    format_trip_duration,
    progress_announcement,
    trip_announcement,
)
from trip.geo import (
    Coordinates,
    Destination,
    RouteProgress,
    haversine_miles,
    place_from_address,
    short_place_name,
)
from trip.positions import PositionFeed
from trip.scheduler import TriggerReason, TriggerScheduler, TriggerState, evaluate_triggers
from trip.session import TripController

CAMPBELL = Coordinates(37.2872, -121.9500)
MONTEREY = Coordinates(36.6002, -121.8947)


class FakeGeocoder:
    def __init__(self, result="Campbell, California, United States"):
        self.result = result
        self.calls = []

    async def place_name(self, position):
        self.calls.append(position)
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeNarration:
    def __init__(self):
        self.spoken = []
        self.stops = 0
        self.is_speaking = False

    def speak(self, text, voice=None):
        self.spoken.append(text)
        future = asyncio.get_event_loop().create_future()
        future.set_result(None)
        return future

    def stop(self):
        self.stops += 1


class FakeAcquirer:
    def __init__(self):
        self.calls = []

    async def acquire_fact(self, place_name, is_destination=False):
        self.calls.append((place_name, is_destination))
        return AcquiredFact(text=f"🌟 Fact about {short_place_name(place_name)}", verified=True)


async def _acquire_ok(place_name, is_destination):
    return AcquiredFact(text=f"🌟 {place_name}", verified=True)


class TestGeo:
    def test_one_degree_latitude(self):
        miles = haversine_miles(Coordinates(0.0, 0.0), Coordinates(1.0, 0.0))
        assert miles == pytest.approx(69.09, abs=0.01)

    def test_same_point(self):
        assert haversine_miles(CAMPBELL, CAMPBELL) == 0.0

    def test_symmetric(self):
        assert haversine_miles(CAMPBELL, MONTEREY) == pytest.approx(
            haversine_miles(MONTEREY, CAMPBELL)
        )

    def test_lon_lat_order(self):
        point = Coordinates.from_lon_lat([-121.95, 37.28])
        assert point.latitude == 37.28
        assert point.longitude == -121.95
        assert point.as_lon_lat() == (-121.95, 37.28)

    def test_short_place_name(self):
        assert short_place_name("Campbell, California, United States") == "Campbell"
        assert short_place_name("Campbell") == "Campbell"

    def test_place_from_address(self):
        address = "Monterey Bay Aquarium, 886 Cannery Row, Monterey, California 93940, United States"
        assert place_from_address(address) == "Monterey, California 93940"
        assert place_from_address("Monterey") == "Monterey"

    def test_destination_display_name(self):
        dest = Destination("1", "Monterey, California, United States", MONTEREY)
        assert dest.display_name == "Monterey"
        named = Destination("2", "Somewhere, CA", MONTEREY, short_name="The Aquarium")
        assert named.display_name == "The Aquarium"


class TestAnnouncements:
    def test_trip_duration(self):
        assert format_trip_duration(45) == "45 minutes"
        assert format_trip_duration(61) == "1 hour and 1 minutes"
        assert format_trip_duration(135) == "2 hours and 15 minutes"

    def test_time_left(self):
        assert format_time_left(20) == "20 minutes"
        assert format_time_left(120) == "about 2 hours"
        assert format_time_left(90) == "about 1 hour and 30 minutes"

    def test_trip_announcement(self):
        text = trip_announcement("Monterey", 90, 71.46)
        assert text == ("Let's go to Monterey! It will take about 1 hour and 30 minutes "
                        "and is 71.5 miles away.")

    def test_progress_announcement(self):
        assert progress_announcement(30, 12.0) == (
            "We have 12.0 miles to go. That's 30 minutes until we get there!"
        )

    def test_arrival_announcement(self):
        assert arrival_announcement("Monterey") == "Yay! You made it to Monterey! Great job!"


class TestPositionFeed:
    @pytest.mark.asyncio
    async def test_fan_out(self):
        feed = PositionFeed()
        a, b = feed.subscribe(), feed.subscribe()
        feed.publish(CAMPBELL)
        assert await a.get() == CAMPBELL
        assert await b.get() == CAMPBELL
        assert feed.latest == CAMPBELL

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        feed = PositionFeed()
        sub = feed.subscribe()
        feed.publish(CAMPBELL)
        sub.close()
        received = [p async for p in sub]
        assert received == [CAMPBELL]
        assert feed.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_close_wakes_waiter(self):
        feed = PositionFeed()
        sub = feed.subscribe()
        waiter = asyncio.create_task(sub.get())
        await asyncio.sleep(0)
        sub.close()
        assert await asyncio.wait_for(waiter, 1.0) is None

    @pytest.mark.asyncio
    async def test_closed_subscription_gets_nothing_new(self):
        feed = PositionFeed()
        sub = feed.subscribe()
        sub.close()
        sub.close()
        feed.publish(CAMPBELL)
        assert await sub.get() is None


class TestEvaluateTriggers:
    config = TriggerConfig(time_threshold_seconds=300, distance_threshold_miles=5)

    def _state(self, **kwargs):
        defaults = dict(last_place="Campbell", last_fact_timestamp=1000.0,
                        last_fact_position=CAMPBELL)
        defaults.update(kwargs)
        return TriggerState(**defaults)

    def test_nothing_changed(self):
        assert evaluate_triggers(self._state(), "Campbell", CAMPBELL, 1010.0, self.config) is None

    def test_place_change(self):
        reason = evaluate_triggers(self._state(), "Los Gatos", CAMPBELL, 1010.0, self.config)
        assert reason == TriggerReason.PLACE

    def test_unknown_place_is_not_a_change(self):
        assert evaluate_triggers(self._state(), None, CAMPBELL, 1010.0, self.config) is None

    def test_no_previous_fact(self):
        reason = evaluate_triggers(TriggerState(), None, None, 0.0, self.config)
        assert reason == TriggerReason.TIME

    def test_time_threshold_inclusive(self):
        assert evaluate_triggers(self._state(), "Campbell", CAMPBELL, 1299.9, self.config) is None
        reason = evaluate_triggers(self._state(), "Campbell", CAMPBELL, 1300.0, self.config)
        assert reason == TriggerReason.TIME

    def test_distance_threshold(self):
        near = Coordinates(CAMPBELL.latitude + 0.05, CAMPBELL.longitude)  # ~3.5 mi
        far = Coordinates(CAMPBELL.latitude + 0.08, CAMPBELL.longitude)   # ~5.5 mi
        assert evaluate_triggers(self._state(), "Campbell", near, 1010.0, self.config) is None
        reason = evaluate_triggers(self._state(), "Campbell", far, 1010.0, self.config)
        assert reason == TriggerReason.DISTANCE

    def test_short_time_and_distance_in_same_place(self):
        pos = Coordinates(CAMPBELL.latitude + 0.029, CAMPBELL.longitude)  # ~2 mi
        assert evaluate_triggers(self._state(), "Campbell", pos, 1180.0, self.config) is None

    def test_place_checked_first(self):
        far = Coordinates(CAMPBELL.latitude + 1.0, CAMPBELL.longitude)
        reason = evaluate_triggers(self._state(), "Gilroy", far, 5000.0, self.config)
        assert reason == TriggerReason.PLACE

    def test_deltas_measured_from_last_fact(self):
        # Many small moves never reset the reference point
        config = TriggerConfig(distance_threshold_miles=5)
        state = self._state()
        for step in range(1, 8):
            pos = Coordinates(CAMPBELL.latitude + 0.0125 * step, CAMPBELL.longitude)
            reason = evaluate_triggers(state, "Campbell", pos, 1010.0, config)
        assert reason == TriggerReason.DISTANCE


class TestTriggerScheduler:
    def _scheduler(self, geocoder=None, acquire=_acquire_ok, clock=None, **config):
        facts = []
        scheduler = TriggerScheduler(
            positions=PositionFeed(),
            geocoder=geocoder or FakeGeocoder(),
            acquire=acquire,
            on_fact=lambda fact, place: facts.append((fact, place)),
            config=TriggerConfig(**config),
            clock=clock or FakeClock(),
        )
        return scheduler, facts

    @pytest.mark.asyncio
    async def test_disabled_does_nothing(self):
        geocoder = FakeGeocoder()
        scheduler, facts = self._scheduler(geocoder)
        assert await scheduler.evaluate(CAMPBELL) is None
        assert geocoder.calls == []
        assert facts == []

    @pytest.mark.asyncio
    async def test_place_trigger_records_state(self):
        clock = FakeClock(2000.0)
        scheduler, facts = self._scheduler(clock=clock)
        scheduler.enabled = True
        scheduler.record_acquisition("Los Gatos, California", MONTEREY)

        reason = await scheduler.evaluate(CAMPBELL)

        assert reason == TriggerReason.PLACE
        assert facts[0][1] == "Campbell"
        assert scheduler.state.last_place == "Campbell"
        assert scheduler.state.last_fact_position == CAMPBELL
        assert scheduler.state.last_fact_timestamp == 2000.0

    @pytest.mark.asyncio
    async def test_fallback_fact_advances_state(self):
        async def acquire_fallback(place_name, is_destination):
            return AcquiredFact(text="🚗 You're in Campbell!", verified=False,
                                outcome=AcquisitionPhase.EXHAUSTED)

        scheduler, facts = self._scheduler(acquire=acquire_fallback, clock=FakeClock(2000.0))
        scheduler.enabled = True

        assert await scheduler.evaluate(CAMPBELL) == TriggerReason.PLACE
        assert scheduler.state.last_place == "Campbell"
        assert scheduler.state.last_fact_timestamp == 2000.0
        assert not facts[0][0].verified

        # Same place right after a failed acquisition does not fire again
        assert await scheduler.evaluate(CAMPBELL) is None
        assert len(facts) == 1

    @pytest.mark.asyncio
    async def test_no_trigger_in_same_place(self):
        scheduler, facts = self._scheduler()
        scheduler.enabled = True
        scheduler.record_acquisition("Campbell, California, United States", CAMPBELL)
        assert await scheduler.evaluate(CAMPBELL) is None
        assert facts == []

    @pytest.mark.asyncio
    async def test_time_trigger_reuses_last_place(self):
        clock = FakeClock(1000.0)
        geocoder = FakeGeocoder(MissingCredentialError("mapbox"))
        scheduler, facts = self._scheduler(geocoder, clock=clock)
        scheduler.enabled = True
        scheduler.record_acquisition("Campbell, California", CAMPBELL)

        clock.now = 1300.0
        reason = await scheduler.evaluate(CAMPBELL)

        assert reason == TriggerReason.TIME
        assert facts[0][0].text == "🌟 Campbell, California"

    @pytest.mark.asyncio
    async def test_timestamps_never_go_backwards(self):
        clock = FakeClock(1000.0)
        scheduler, _ = self._scheduler(clock=clock)
        scheduler.record_acquisition("Campbell", CAMPBELL)
        clock.now = 900.0
        scheduler.record_acquisition("Los Gatos", CAMPBELL)
        assert scheduler.state.last_fact_timestamp == 1000.0

    @pytest.mark.asyncio
    async def test_overlapping_evaluation_is_dropped(self):
        gate = asyncio.Event()
        calls = []

        async def slow_acquire(place_name, is_destination):
            calls.append(place_name)
            await gate.wait()
            return AcquiredFact(text="🌟 fact", verified=True)

        scheduler, facts = self._scheduler(acquire=slow_acquire)
        scheduler.enabled = True
        first = asyncio.create_task(scheduler.evaluate(CAMPBELL))
        while not calls:
            await asyncio.sleep(0)

        assert scheduler.in_flight
        assert await scheduler.evaluate(MONTEREY) is None
        assert scheduler.dropped == 1

        gate.set()
        assert await first == TriggerReason.PLACE
        assert len(calls) == 1
        assert len(facts) == 1
        assert not scheduler.in_flight

    @pytest.mark.asyncio
    async def test_position_burst_is_debounced(self):
        geocoder = FakeGeocoder()
        scheduler, facts = self._scheduler(
            geocoder, position_debounce_seconds=0.05, recheck_interval_seconds=3600
        )
        scheduler.enabled = True
        scheduler.start()
        last = Coordinates(37.30, -121.95)
        for pos in (CAMPBELL, MONTEREY, last):
            scheduler.positions.publish(pos)
        await asyncio.sleep(0.3)
        await scheduler.stop()

        assert geocoder.calls == [last]
        assert len(facts) == 1

    @pytest.mark.asyncio
    async def test_recheck_fires_time_trigger_when_stationary(self):
        geocoder = FakeGeocoder()
        scheduler, facts = self._scheduler(
            geocoder, time_threshold_seconds=0, recheck_interval_seconds=0.05
        )
        scheduler.enabled = True
        scheduler.record_acquisition("Campbell, California", CAMPBELL)
        scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()

        assert facts
        assert facts[0][1] == "Campbell"
        # Periodic checks do not geocode
        assert geocoder.calls == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        scheduler, _ = self._scheduler()
        scheduler.start()
        assert scheduler.positions.subscriber_count == 1
        await scheduler.stop()
        await scheduler.stop()
        assert scheduler.positions.subscriber_count == 0
        assert not scheduler.enabled


class TestTripSession:
    def _controller(self, geocoder=None):
        self.narration = FakeNarration()
        self.acquirer = FakeAcquirer()
        self.state = SharedState()
        self.positions = PositionFeed()
        return TripController(
            acquirer=self.acquirer,
            narration=self.narration,
            geocoder=geocoder or FakeGeocoder("Monterey, California, United States"),
            positions=self.positions,
            state=self.state,
            config=TriggerConfig(announcement_gap_seconds=0, recheck_interval_seconds=3600),
        )

    def _destination(self, id="aquarium"):
        return Destination(
            id=id,
            name="Monterey Bay Aquarium, 886 Cannery Row, Monterey, California 93940, United States",
            coordinates=MONTEREY,
            short_name="Monterey Bay Aquarium",
        )

    @pytest.mark.asyncio
    async def test_announcement_then_destination_fact(self):
        controller = self._controller()
        session = await controller.start_trip(self._destination(), RouteProgress(90, 71.5))
        assert not session.scheduler.enabled
        await asyncio.wait_for(session.initial_fact_done.wait(), 1.0)

        assert self.narration.spoken == [
            trip_announcement("Monterey Bay Aquarium", 90, 71.5),
            "🌟 Fact about Monterey",
        ]
        assert self.acquirer.calls == [("Monterey, California, United States", True)]
        assert session.scheduler.enabled
        assert session.scheduler.state.last_place == "Monterey"
        assert self.state.narrator_state == NarratorState.TRACKING
        assert self.state.current_place == "Monterey"
        assert self.state.current_fact_verified
        await controller.end_trip()

    @pytest.mark.asyncio
    async def test_without_route_only_fact_is_spoken(self):
        controller = self._controller()
        session = await controller.start_trip(self._destination())
        await asyncio.wait_for(session.initial_fact_done.wait(), 1.0)
        assert self.narration.spoken == ["🌟 Fact about Monterey"]
        await controller.end_trip()

    @pytest.mark.asyncio
    async def test_destination_falls_back_to_address(self):
        controller = self._controller(FakeGeocoder(MissingCredentialError("mapbox")))
        session = await controller.start_trip(self._destination())
        await asyncio.wait_for(session.initial_fact_done.wait(), 1.0)
        assert self.acquirer.calls == [("Monterey, California 93940", True)]
        await controller.end_trip()

    @pytest.mark.asyncio
    async def test_end_trip_clears_everything(self):
        controller = self._controller()
        session = await controller.start_trip(self._destination())
        await asyncio.wait_for(session.initial_fact_done.wait(), 1.0)

        await controller.end_trip()

        assert controller.session is None
        assert self.narration.stops == 1
        assert self.positions.subscriber_count == 0
        assert not session.scheduler.enabled
        assert session.scheduler.state == TriggerState()
        assert self.state.narrator_state == NarratorState.IDLE
        assert self.state.current_fact is None

    @pytest.mark.asyncio
    async def test_new_destination_replaces_session(self):
        controller = self._controller()
        first = await controller.start_trip(self._destination("a"))
        second = await controller.start_trip(self._destination("b"))
        assert first is not second
        assert controller.session is second
        assert self.positions.subscriber_count == 1
        await controller.end_trip()

    @pytest.mark.asyncio
    async def test_same_destination_keeps_session(self):
        controller = self._controller()
        first = await controller.start_trip(self._destination())
        again = await controller.start_trip(self._destination(), RouteProgress(30, 10.0))
        assert first is again
        assert again.route == RouteProgress(30, 10.0)
        await controller.end_trip()

    @pytest.mark.asyncio
    async def test_user_actions(self):
        controller = self._controller()
        session = await controller.start_trip(self._destination(), RouteProgress(30, 12.0))
        await asyncio.wait_for(session.initial_fact_done.wait(), 1.0)
        self.narration.spoken.clear()

        session.read_aloud()
        session.announce_progress()
        session.announce_arrival()

        assert self.narration.spoken == [
            "🌟 Fact about Monterey",
            progress_announcement(30, 12.0),
            arrival_announcement("Monterey Bay Aquarium"),
        ]
        await controller.end_trip()
