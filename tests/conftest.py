import json
from typing import List, Optional
from urllib.parse import parse_qs

import pytest

from map_narrator.core.config import Settings
from map_narrator.core.errors import LLMError
from map_narrator.models.schemas import GeoLabel, GeoPoint, PointOfInterest, PoisResult

PORTHLEVEN = GeoPoint(lat=50.0820, lon=-5.4265)


def make_settings(**overrides) -> Settings:
    base = {
        "LLM_RETRY_DELAY_MS": 0,
        "OVERPASS_ENDPOINTS": ["https://mirror-a.test/api/interpreter", "https://mirror-b.test/api/interpreter"],
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


def element(
    el_id: int,
    name: Optional[str],
    lat: float = 50.0825,
    lon: float = -5.4270,
    el_type: str = "node",
    **tags,
) -> dict:
    all_tags = dict(tags)
    if name is not None:
        all_tags["name"] = name
    return {"type": el_type, "id": el_id, "lat": lat, "lon": lon, "tags": all_tags}


def poi(
    name: str,
    category: str = "attraction",
    score: int = 5,
    distance_km: float = 0.5,
    bucket: Optional[str] = None,
    food_kind: Optional[str] = None,
) -> PointOfInterest:
    if category == "food":
        bucket = "food"
        food_kind = food_kind or "other"
    return PointOfInterest(
        name=name,
        category=category,
        lat=50.08,
        lon=-5.42,
        distance_km=distance_km,
        score=score,
        bucket=bucket or "landmark",
        food_kind=food_kind,
    )


def query_text(request) -> str:
    """Overpass QL text from a form-encoded POST."""
    return parse_qs(request.content.decode())["data"][0]


def narration_payload(
    places: List[str],
    detail: Optional[str] = None,
    food_drink: str = "Stop for a pint at The Ship Inn by the harbour.",
    distances: Optional[List[float]] = None,
) -> dict:
    distances = distances or [0.4, 0.8, 1.2]
    if detail is None:
        detail = (
            f"Start at {places[0]} ({distances[0]} km), then head to {places[1]} "
            f"({distances[1]} km) and finish at {places[2]} ({distances[2]} km)."
        )
    return {
        "introParagraph": "A small working harbour on the Lizard coast, busy with boats and gulls all year round.",
        "detailParagraph": detail,
        "placesToVisit": [{"name": n, "distanceKm": d} for n, d in zip(places, distances)],
        "activities": {
            "walk": "Follow the coast path along the cliffs at low tide.",
            "culture": "Look for old net lofts and fishermen's chapels.",
            "foodDrink": food_drink,
        },
    }


class FakeLLM:
    """Returns queued raw responses (or raises queued LLMErrors) in order."""

    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.prompts: List[str] = []

    async def generate_text(self, prompt: str, json_mode: bool = True) -> str:
        self.prompts.append(prompt)
        item = self.responses.pop(0)
        if isinstance(item, LLMError):
            raise item
        if isinstance(item, dict):
            return json.dumps(item)
        return item


class FakeGeocoder:
    def __init__(self, geo: Optional[GeoLabel]) -> None:
        self.geo = geo

    async def reverse_geocode(self, point: GeoPoint) -> Optional[GeoLabel]:
        return self.geo


class FakePlaces:
    def __init__(self, result: PoisResult) -> None:
        self.result = result
        self.calls = 0

    async def resolve(self, point, budget_ms=None, cancel=None) -> PoisResult:
        self.calls += 1
        return self.result


PORTHLEVEN_GEO = GeoLabel(
    label="Porthleven",
    display_name="Porthleven, Cornwall, England, United Kingdom",
    short_name="Porthleven, England",
    country="United Kingdom",
    region="England",
    country_code="GB",
)
