from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from trip.geo import Coordinates, Destination, RouteProgress

router = APIRouter()


class RouteBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration_minutes: int = Field(alias="durationMinutes", ge=0)
    distance_miles: float = Field(alias="distanceMiles", ge=0)

    def to_progress(self) -> RouteProgress:
        return RouteProgress(self.duration_minutes, self.distance_miles)


class DestinationBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    short_name: Optional[str] = Field(default=None, alias="shortName")
    coordinates: tuple[float, float]  # [longitude, latitude]
    route: Optional[RouteBody] = None


class PositionBody(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


def _no_trip() -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": "No active trip"})


@router.get("/")
async def get_trip(request: Request):
    """Current trip status."""
    state = request.app.state.shared_state
    narrator = request.app.state.narrator
    session = narrator.trips.session
    route = session.route if session is not None else None
    return {
        "active": session is not None,
        "state": state.narrator_state.value,
        "destination": state.destination_name,
        "place": state.current_place,
        "fact": state.current_fact,
        "verified": state.current_fact_verified,
        "factsNarrated": state.facts_narrated,
        "speaking": narrator.narration.is_speaking,
        "pendingNarrations": narrator.narration.pending,
        "route": (
            {"durationMinutes": route.duration_minutes, "distanceMiles": route.distance_miles}
            if route is not None else None
        ),
        "lastError": state.last_error,
    }


@router.put("/destination")
async def set_destination(body: DestinationBody, request: Request):
    """Select a destination and start the trip."""
    destination = Destination(
        id=body.id,
        name=body.name,
        coordinates=Coordinates.from_lon_lat(body.coordinates),
        short_name=body.short_name,
    )
    route = body.route.to_progress() if body.route is not None else None
    session = await request.app.state.narrator.trips.start_trip(destination, route)
    return {"status": "started", "destination": session.destination.display_name}


@router.delete("/destination")
async def clear_destination(request: Request):
    await request.app.state.narrator.trips.end_trip()
    return {"status": "ended"}


@router.post("/position")
async def post_position(body: PositionBody, request: Request):
    request.app.state.narrator.positions.publish(Coordinates(body.latitude, body.longitude))
    return {"status": "ok"}


@router.put("/route")
async def update_route(body: RouteBody, request: Request):
    session = request.app.state.narrator.trips.session
    if session is None:
        return _no_trip()
    session.update_route(body.to_progress())
    return {"status": "updated"}


@router.post("/read-aloud")
async def read_aloud(request: Request):
    """Narrate the current fact again."""
    session = request.app.state.narrator.trips.session
    if session is None:
        return _no_trip()
    if session.read_aloud() is None:
        return JSONResponse(status_code=409, content={"error": "No fact yet"})
    return {"status": "speaking"}


@router.post("/progress")
async def announce_progress(request: Request):
    session = request.app.state.narrator.trips.session
    if session is None:
        return _no_trip()
    if session.announce_progress() is None:
        return JSONResponse(status_code=409, content={"error": "No route information"})
    return {"status": "speaking"}


@router.post("/arrived")
async def arrived(request: Request):
    """Announce arrival and end the trip. The announcement keeps playing."""
    narrator = request.app.state.narrator
    session = narrator.trips.session
    if session is None:
        return _no_trip()
    session.announce_arrival()
    await narrator.trips.end_trip(stop_narration=False)
    return {"status": "arrived"}


@router.post("/stop")
async def stop_narration(request: Request):
    """Stop all current and queued narration."""
    request.app.state.narrator.narration.stop()
    return {"status": "stopped"}
