# map_narrator/services/nominatim_client.py

from typing import Dict, List, Optional

import httpx

from map_narrator.core.cache import CacheStore, MemoryCache, get_or_compute_json
from map_narrator.core.config import Settings
from map_narrator.core.logging_config import logger
from map_narrator.models.schemas import GeoLabel, GeoPoint

UNKNOWN_PLACE = "Unknown place"

# Settlement-level first; ultra-local fields only as a fallback
LABEL_FIELDS = [
    "village",
    "town",
    "city",
    "municipality",
    "suburb",
    "neighbourhood",
    "locality",
    "hamlet",
    "county",
]


class NominatimClient:
    def __init__(
        self,
        settings: Settings,
        cache: Optional[CacheStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache if cache is not None else MemoryCache()
        self._transport = transport

    async def reverse_geocode(self, point: GeoPoint) -> Optional[GeoLabel]:
        """
        Use Nominatim to turn (lat, lon) into a short, human-readable label.

        Returns None on any upstream failure; callers fall back to a
        generic label.
        """
        rounded = point.rounded(5)
        key = f"geo:v2:rev:{rounded.lat:.5f},{rounded.lon:.5f}"

        async def compute() -> Optional[dict]:
            geo = await self._fetch(rounded)
            return geo.model_dump() if geo else None

        value, cache_hit = await get_or_compute_json(
            self.cache,
            key,
            self.settings.GEO_CACHE_TTL_S,
            compute,
            should_store=lambda v: v is not None,
        )
        if value is None:
            return None

        geo = GeoLabel.model_validate(value)
        logger.info(f"Nominatim reverse ({point.lat}, {point.lon}) -> {geo.label!r} (cache_hit={cache_hit})")
        return geo

    async def _fetch(self, point: GeoPoint) -> Optional[GeoLabel]:
        params = {
            "format": "jsonv2",
            "lat": point.lat,
            "lon": point.lon,
        }
        headers = {
            "Accept": "application/json",
            # Nominatim requires a valid User-Agent identifying your app
            "User-Agent": self.settings.USER_AGENT,
        }

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.get(self.settings.NOMINATIM_URL, params=params, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(f"Nominatim request failed: {exc}")
            return None

        try:
            data = response.json()
        except ValueError as exc:
            logger.error(f"Nominatim returned invalid JSON: {exc}")
            return None

        if not isinstance(data, dict) or "error" in data:
            logger.info(f"Nominatim found nothing at ({point.lat}, {point.lon})")
            return None

        return label_from_response(data)


def label_from_response(data: dict) -> GeoLabel:
    address: Dict[str, str] = data.get("address") or {}

    label = next((address[f] for f in LABEL_FIELDS if address.get(f)), UNKNOWN_PLACE)
    region = address.get("state") or address.get("county")
    short_name = f"{label}, {address['state']}" if address.get("state") else label
    display_name = data.get("display_name") or data.get("name") or short_name
    country_code = address.get("country_code")

    return GeoLabel(
        label=label,
        display_name=display_name,
        short_name=short_name,
        country=address.get("country"),
        region=region,
        country_code=country_code.upper() if country_code else None,
    )


def fallback_label(point: GeoPoint) -> GeoLabel:
    logger.warning(f"Using fallback label for ({point.lat}, {point.lon})")
    return GeoLabel(label=UNKNOWN_PLACE, display_name=UNKNOWN_PLACE, short_name=UNKNOWN_PLACE)


def image_candidates(geo: GeoLabel) -> List[str]:
    """Ordered, de-duplicated title variants for the image lookup."""
    raw = [
        geo.label,
        geo.short_name,
        geo.short_name.split(",")[0],
        geo.display_name.split(",")[0],
    ]
    seen = set()
    out: List[str] = []
    for title in raw:
        title = (title or "").strip()
        if not title or title == UNKNOWN_PLACE or title in seen:
            continue
        seen.add(title)
        out.append(title)
    return out
