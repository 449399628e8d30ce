import math
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_MILES = 3959.0


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    @classmethod
    def from_lon_lat(cls, pair) -> "Coordinates":
        """Build from a [longitude, latitude] pair (map-provider order)."""
        lon, lat = pair
        return cls(latitude=float(lat), longitude=float(lon))

    def as_lon_lat(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)


@dataclass(frozen=True)
class Destination:
    id: str
    name: str
    coordinates: Coordinates
    short_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.short_name or short_place_name(self.name)


@dataclass(frozen=True)
class RouteProgress:
    duration_minutes: int
    distance_miles: float


def haversine_miles(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in miles."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(h))


def short_place_name(place_name: str) -> str:
    """'Springfield, Illinois, United States' -> 'Springfield'"""
    return place_name.split(",")[0].strip()


def place_from_address(address: str) -> str:
    """Best-effort city extraction from 'Name, Street, City, State ZIP, Country'."""
    parts = [p.strip() for p in address.split(",")]
    if len(parts) >= 3:
        return ", ".join(parts[-3:-1])
    return address.strip()
