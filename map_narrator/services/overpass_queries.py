# map_narrator/services/overpass_queries.py

from map_narrator.models.schemas import GeoPoint

ATTRACTION_FILTERS = [
    '["tourism"~"attraction|museum|gallery|viewpoint|zoo|theme_park|artwork"]',
    '["historic"~"castle|ruins|monument|memorial|fort|archaeological_site"]',
    '["man_made"~"lighthouse|tower|bridge"]',
    '["natural"~"beach|peak|cliff|waterfall|bay"]',
    '["leisure"~"park|garden|nature_reserve"]',
]

FOOD_FILTERS = [
    '["amenity"~"restaurant|cafe|fast_food|pub|bar"]',
]


def _build_query(point: GeoPoint, radius_m: int, filters: list, server_timeout_s: int) -> str:
    around = f"around:{int(radius_m)},{point.lat},{point.lon}"
    lines = "\n".join(f"  node({around}){f};" for f in filters)
    return f"""
[out:json][timeout:{server_timeout_s}];
(
{lines}
);
out tags center;
"""


def build_attraction_query(point: GeoPoint, radius_m: int, server_timeout_s: int = 15) -> str:
    """
    Overpass QL for narratable attractions around a point.
    Nodes only: ways/relations make the mirrors noticeably slower.
    """
    return _build_query(point, radius_m, ATTRACTION_FILTERS, server_timeout_s)


def build_food_query(point: GeoPoint, radius_m: int, server_timeout_s: int = 15) -> str:
    """Overpass QL for food & drink venues around a point."""
    return _build_query(point, radius_m, FOOD_FILTERS, server_timeout_s)
