from typing import Optional

import httpx
from loguru import logger

from core.config import ConfigManager
from trip.geo import Coordinates

MAPBOX_GEOCODE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{lon},{lat}.json"


class ReverseGeocoder:
    """Turns coordinates into a place name using Mapbox reverse geocoding.

    Prefers the city ("place") and falls back to locality/neighborhood.
    """

    def __init__(self, config_manager: ConfigManager, timeout: float = 10.0):
        self.config_manager = config_manager
        self.timeout = timeout

    async def place_name(self, position: Coordinates) -> Optional[str]:
        """Return the place name, or None if nothing was found.

        Raises MissingCredentialError when no map token is configured.
        Transport errors are logged and reported as None.
        """
        token = self.config_manager.require_api_key("mapbox")
        url = MAPBOX_GEOCODE_URL.format(lon=position.longitude, lat=position.latitude)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                for types in ("place", "locality,neighborhood"):
                    resp = await client.get(
                        url, params={"access_token": token, "types": types, "limit": 1}
                    )
                    resp.raise_for_status()
                    features = resp.json().get("features") or []
                    if features:
                        return features[0].get("place_name")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[GEO] Reverse geocoding failed: {}", e)
            return None
        return None
