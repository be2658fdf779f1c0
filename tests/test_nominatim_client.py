import asyncio

import httpx

from conftest import PORTHLEVEN, make_settings
from map_narrator.core.cache import MemoryCache
from map_narrator.models.schemas import GeoLabel
from map_narrator.services.nominatim_client import (
    NominatimClient,
    fallback_label,
    image_candidates,
    label_from_response,
)

REVERSE = {
    "display_name": "Porthleven, Cornwall, England, TR13, United Kingdom",
    "address": {
        "neighbourhood": "Harbour Head",
        "town": "Porthleven",
        "county": "Cornwall",
        "state": "England",
        "country": "United Kingdom",
        "country_code": "gb",
    },
}


def test_label_prefers_settlement_over_neighbourhood():
    geo = label_from_response(REVERSE)
    assert geo.label == "Porthleven"
    assert geo.short_name == "Porthleven, England"
    assert geo.region == "England"
    assert geo.country_code == "GB"


def test_label_without_address():
    geo = label_from_response({})
    assert geo.label == "Unknown place"
    assert geo.display_name == "Unknown place"


def test_reverse_geocode_is_cached():
    calls = []

    def handler(request):
        calls.append(request)
        assert request.url.params["format"] == "jsonv2"
        return httpx.Response(200, json=REVERSE)

    client = NominatimClient(make_settings(), cache=MemoryCache(), transport=httpx.MockTransport(handler))

    async def run():
        return await client.reverse_geocode(PORTHLEVEN), await client.reverse_geocode(PORTHLEVEN)

    first, second = asyncio.run(run())
    assert first == second
    assert first.label == "Porthleven"
    assert len(calls) == 1


def test_reverse_geocode_failure_returns_none():
    def handler(request):
        return httpx.Response(500)

    client = NominatimClient(make_settings(), transport=httpx.MockTransport(handler))
    assert asyncio.run(client.reverse_geocode(PORTHLEVEN)) is None


def test_image_candidates_are_ordered_and_unique():
    geo = GeoLabel(
        label="Porthleven",
        display_name="Porthleven, Cornwall, England",
        short_name="Porthleven, England",
    )
    assert image_candidates(geo) == ["Porthleven", "Porthleven, England"]


def test_fallback_label_has_no_image_candidates():
    assert image_candidates(fallback_label(PORTHLEVEN)) == []
