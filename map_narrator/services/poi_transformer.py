# map_narrator/services/poi_transformer.py

from typing import Any, Dict, List, Optional, Tuple

from map_narrator.core.geo import km_between
from map_narrator.models.schemas import Category, GeoPoint, PointOfInterest

OSM_BASE_URL = "https://www.openstreetmap.org"

LOW_SIGNAL_NAMES = {"park", "playground"}
LOW_SIGNAL_SUBSTRINGS = ["playing fields"]

FOOD_KIND_SCORES = {
    "pub": 5,
    "cafe": 4,
    "bar": 4,
    "restaurant": 3,
}


def transform(point: GeoPoint, category: Category, elements: List[Dict[str, Any]]) -> List[PointOfInterest]:
    """
    Turn raw Overpass elements into ranked, de-duplicated POIs.

    Pure and deterministic: identical input gives identical, identically
    ordered output. Distances are measured from `point`.
    """
    pois: List[PointOfInterest] = []

    for el in elements:
        coords = _element_coords(el)
        if coords is None:
            continue

        tags = el.get("tags") or {}
        name = _element_name(tags)
        if not name:
            continue

        if category == "attraction" and _is_low_signal(name):
            continue

        lat, lon = coords
        distance = km_between(point.lat, point.lon, lat, lon)

        if category == "attraction":
            bucket, hint, score = derive_attraction_meta(tags)
            food_kind = None
        else:
            food_kind, hint, score = derive_food_meta(tags)
            bucket = "food"

        pois.append(
            PointOfInterest(
                name=name,
                category=category,
                lat=lat,
                lon=lon,
                distance_km=distance,
                source_url=_osm_url(el),
                score=score,
                bucket=bucket,
                food_kind=food_kind,
                hint=hint,
            )
        )

    seen = set()
    deduped: List[PointOfInterest] = []
    for poi in pois:
        key = poi.dedup_key()
        if key in seen:
            continue
        seen.add(key)
        deduped.append(poi)

    deduped.sort(key=lambda p: (-p.score, p.distance_km))
    return deduped


def derive_attraction_meta(tags: Dict[str, str]) -> Tuple[str, str, int]:
    """Return (bucket, hint, score) for an attraction's tags."""
    tourism = tags.get("tourism")
    historic = tags.get("historic")
    man_made = tags.get("man_made")
    natural = tags.get("natural")
    leisure = tags.get("leisure")
    documented = bool(tags.get("wikipedia") or tags.get("wikidata"))

    bucket = "landmark"
    hint = ""
    score = 0

    if documented:
        score += 6
    if tags.get("website"):
        score += 3

    if tourism:
        if tourism == "museum":
            bucket, hint = "culture", "museum"
            score += 6
        elif tourism == "gallery":
            bucket, hint = "culture", "gallery"
            score += 5
        elif tourism == "viewpoint":
            bucket, hint = "scenic", "viewpoint"
            score += 5
        else:
            bucket, hint = "landmark", tourism
            score += 4

    # historic outranks whatever tourism said
    if historic:
        bucket = "history"
        hint = historic
        if historic == "castle":
            score += 7
        elif historic == "ruins":
            score += 6
        else:
            score += 5

    if man_made and not hint:
        bucket, hint = "landmark", man_made
        score += 3

    if natural and not hint:
        bucket, hint = "scenic", natural
        score += 4

    if leisure in ("park", "garden", "nature_reserve") and not (tourism or historic or man_made or natural):
        bucket = "park"
        hint = hint or leisure
        # bare parks are everywhere; only documented ones earn points
        if documented:
            score += 3

    return bucket, hint, score


def derive_food_meta(tags: Dict[str, str]) -> Tuple[str, str, int]:
    """Return (food_kind, hint, score) for a food venue's tags."""
    amenity = tags.get("amenity") or ""

    food_kind = amenity if amenity in FOOD_KIND_SCORES else "other"
    score = FOOD_KIND_SCORES.get(amenity, 1)
    hint = amenity or "food & drink"

    if tags.get("website"):
        score += 2
    if tags.get("wikipedia") or tags.get("wikidata"):
        score += 3

    return food_kind, hint, score


# ---------------- Helpers ----------------

def _element_coords(el: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    lat, lon = el.get("lat"), el.get("lon")
    if _is_number(lat) and _is_number(lon):
        return float(lat), float(lon)

    center = el.get("center") or {}
    lat, lon = center.get("lat"), center.get("lon")
    if _is_number(lat) and _is_number(lon):
        return float(lat), float(lon)

    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _element_name(tags: Dict[str, str]) -> Optional[str]:
    name = tags.get("name") or tags.get("name:en") or ""
    name = name.strip()
    return name or None


def _is_low_signal(name: str) -> bool:
    lower = name.lower()
    if lower in LOW_SIGNAL_NAMES:
        return True
    return any(bad in lower for bad in LOW_SIGNAL_SUBSTRINGS)


def _osm_url(el: Dict[str, Any]) -> Optional[str]:
    el_type = el.get("type")
    el_id = el.get("id")
    if el_type not in ("node", "way", "relation") or el_id is None:
        return None
    return f"{OSM_BASE_URL}/{el_type}/{el_id}"
