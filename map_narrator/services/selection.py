# map_narrator/services/selection.py

from typing import Callable, List, Optional, Sequence

from map_narrator.models.schemas import CuratedSelection, PointOfInterest

ATTRACTION_BUCKET_PRIORITY = ["history", "culture", "scenic", "landmark", "park"]
FOOD_KIND_PRIORITY = ["pub", "restaurant", "cafe", "bar"]

# Only the head of each ranked list is worth considering
MAX_CANDIDATES = 20


def select_attractions(pois: Sequence[PointOfInterest], n: int = 3) -> List[PointOfInterest]:
    """One best POI per bucket (history first), then backfill by score."""
    return _pick_diverse(pois, n, ATTRACTION_BUCKET_PRIORITY, lambda p: p.bucket)


def select_food(pois: Sequence[PointOfInterest], n: int = 6) -> List[PointOfInterest]:
    """One best venue per kind (pub first), then backfill by score."""
    return _pick_diverse(pois, n, FOOD_KIND_PRIORITY, lambda p: p.food_kind)


def curate(
    attractions: Sequence[PointOfInterest],
    food: Sequence[PointOfInterest],
    n_attractions: int = 3,
    n_food: int = 6,
) -> CuratedSelection:
    return CuratedSelection(
        selected_attractions=select_attractions(attractions, n_attractions),
        selected_eateries=select_food(food, n_food),
    )


def _pick_diverse(
    pois: Sequence[PointOfInterest],
    n: int,
    priority: List[str],
    group_of: Callable[[PointOfInterest], Optional[str]],
) -> List[PointOfInterest]:
    if n <= 0:
        return []

    # stable sort keeps input order for equal (score, distance)
    candidates = sorted(
        (p for p in pois if p.name.strip()),
        key=lambda p: (-p.score, p.distance_km),
    )[:MAX_CANDIDATES]

    picked: List[PointOfInterest] = []
    used = set()

    for group in priority:
        if len(picked) >= n:
            break
        best = next(
            (p for p in candidates if group_of(p) == group and p.name.lower() not in used),
            None,
        )
        if best is not None:
            picked.append(best)
            used.add(best.name.lower())

    for p in candidates:
        if len(picked) >= n:
            break
        if p.name.lower() not in used:
            picked.append(p)
            used.add(p.name.lower())

    return picked
