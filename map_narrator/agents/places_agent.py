# map_narrator/agents/places_agent.py

import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from map_narrator.core.cache import CacheStore, MemoryCache, get_or_compute_json
from map_narrator.core.config import Settings
from map_narrator.core.errors import OverpassError, RequestCancelled
from map_narrator.core.logging_config import logger
from map_narrator.models.schemas import Category, GeoPoint, PointOfInterest, PoisResult
from map_narrator.services.overpass_client import OverpassClient
from map_narrator.services.overpass_queries import build_attraction_query, build_food_query
from map_narrator.services.poi_transformer import transform

MAX_POIS_PER_CATEGORY = 25
BUDGET_WARNING = "POI lookup timed out; showing partial nearby results."


@dataclass(frozen=True)
class Strategy:
    name: str
    attraction_radius_m: int
    food_radius_m: int


STRATEGIES: Tuple[Strategy, ...] = (
    Strategy("normal", 2500, 1000),
    Strategy("fallback", 1500, 1000),
    Strategy("minimal", 500, 500),
)


class PlacesAgent:
    """
    Budgeted POI resolver.

    Strategy:
    1) Walk STRATEGIES in descending radius order inside one wall-clock budget.
    2) Within a tier, query attractions and food concurrently; either may fail
       without aborting the other.
    3) Keep the best attraction list and the best food list seen so far,
       independently, and return them once a tier finds anything (or, with
       POIS_REQUIRE_BOTH_CATEGORIES, once both categories are filled).
    4) When the budget fires, in-flight calls are aborted and the best
       partial result is returned with `budget_exceeded=True`.

    `resolve` never raises on upstream failure; total failure comes back as
    an empty result with `error` set.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[OverpassClient] = None,
        cache: Optional[CacheStore] = None,
        strategies: Tuple[Strategy, ...] = STRATEGIES,
        tier_delay_s: float = 0.3,
    ) -> None:
        self.settings = settings
        self.client = client or OverpassClient(
            settings.OVERPASS_ENDPOINTS, user_agent=settings.USER_AGENT
        )
        self.cache = cache if cache is not None else MemoryCache()
        self.strategies = strategies
        self.tier_delay_s = tier_delay_s

    async def resolve(
        self,
        point: GeoPoint,
        budget_ms: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> PoisResult:
        budget_ms = self.settings.POIS_BUDGET_MS if budget_ms is None else budget_ms

        # ~100m rounding keeps cache keys stable for nearby clicks
        rounded = point.rounded(3)
        key = f"pois:v3:{rounded.lat:.3f},{rounded.lon:.3f}"

        async def compute() -> dict:
            result = await self._resolve_uncached(rounded, budget_ms, cancel)
            return result.model_dump()

        def should_store(value: dict) -> bool:
            return (
                not value["budget_exceeded"]
                and value["error"] is None
                and bool(value["attractions"] or value["food"])
            )

        value, cache_hit = await get_or_compute_json(
            self.cache, key, self.settings.POIS_CACHE_TTL_S, compute, should_store
        )
        result = PoisResult.model_validate(value)
        result.cache_hit = cache_hit

        logger.info(
            f"PlacesAgent: cache_hit={cache_hit} attractions={len(result.attractions)} "
            f"food={len(result.food)} budget_exceeded={result.budget_exceeded}"
        )
        return result

    async def _resolve_uncached(
        self,
        point: GeoPoint,
        budget_ms: int,
        external_cancel: Optional[asyncio.Event],
    ) -> PoisResult:
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        budget_s = budget_ms / 1000

        budget_fired = asyncio.Event()
        timer = loop.call_later(budget_s, budget_fired.set)
        relay = None
        if external_cancel is not None:
            relay = asyncio.ensure_future(_relay(external_cancel, budget_fired))

        best_attractions: List[PointOfInterest] = []
        best_food: List[PointOfInterest] = []
        last_error: Optional[str] = None
        budget_exceeded = False

        try:
            for index, strategy in enumerate(self.strategies):
                if external_cancel is not None and external_cancel.is_set():
                    raise RequestCancelled("POI resolution cancelled by caller")

                elapsed_ms = (time.monotonic() - started) * 1000
                if elapsed_ms >= budget_ms or budget_fired.is_set():
                    budget_exceeded = True
                    logger.warning(
                        f"PlacesAgent: budget exceeded before {strategy.name!r} "
                        f"({elapsed_ms:.0f}ms >= {budget_ms}ms)"
                    )
                    break

                timeout_ms = self._call_timeout_ms(budget_ms - elapsed_ms)
                logger.info(
                    f"PlacesAgent: trying {strategy.name!r} strategy "
                    f"(attractions {strategy.attraction_radius_m}m, food {strategy.food_radius_m}m, "
                    f"timeout {timeout_ms}ms)"
                )

                att_res, food_res = await asyncio.gather(
                    self._fetch_category(point, "attraction", strategy.attraction_radius_m, timeout_ms, budget_fired),
                    self._fetch_category(point, "food", strategy.food_radius_m, timeout_ms, budget_fired),
                    return_exceptions=True,
                )

                if external_cancel is not None and external_cancel.is_set():
                    raise RequestCancelled("POI resolution cancelled by caller")
                if budget_fired.is_set():
                    budget_exceeded = True

                attractions = att_res if isinstance(att_res, list) else []
                food = food_res if isinstance(food_res, list) else []

                if len(attractions) > len(best_attractions):
                    best_attractions = attractions
                if len(food) > len(best_food):
                    best_food = food

                logger.info(
                    f"PlacesAgent: {strategy.name!r} complete -> "
                    f"attractions={len(attractions)} food={len(food)}"
                )

                if self._tier_satisfied(best_attractions, best_food) or budget_exceeded:
                    break

                reasons = [
                    f"{label}: {res}"
                    for label, res in (("attractions", att_res), ("food", food_res))
                    if isinstance(res, BaseException)
                ]
                last_error = (
                    f"{strategy.name} strategy failed: "
                    f"{', '.join(reasons) if reasons else 'no POIs found'}"
                )
                logger.warning(f"PlacesAgent: {last_error}")

                if index < len(self.strategies) - 1 and self.tier_delay_s > 0:
                    await asyncio.sleep(self.tier_delay_s)
        finally:
            timer.cancel()
            if relay is not None:
                relay.cancel()

        warnings = [BUDGET_WARNING] if budget_exceeded else []

        if not best_attractions and not best_food:
            error = last_error or (
                "POI lookup budget exhausted before any strategy completed"
                if budget_exceeded
                else "All strategies failed to find POIs"
            )
            logger.error(f"PlacesAgent: no POIs near ({point.lat}, {point.lon}): {error}")
            return PoisResult(budget_exceeded=budget_exceeded, error=error, warnings=warnings)

        return PoisResult(
            attractions=best_attractions,
            food=best_food,
            budget_exceeded=budget_exceeded,
            warnings=warnings,
        )

    async def _fetch_category(
        self,
        point: GeoPoint,
        category: Category,
        radius_m: int,
        timeout_ms: int,
        cancel: asyncio.Event,
    ) -> List[PointOfInterest]:
        if category == "attraction":
            query = build_attraction_query(point, radius_m)
        else:
            query = build_food_query(point, radius_m)

        try:
            elements = await self.client.fetch(query, timeout_ms, cancel)
        except (OverpassError, RequestCancelled) as exc:
            logger.warning(f"PlacesAgent: {category} query failed: {exc}")
            raise

        return transform(point, category, elements)[:MAX_POIS_PER_CATEGORY]

    def _call_timeout_ms(self, remaining_ms: float) -> int:
        capped = min(remaining_ms, self.settings.OVERPASS_QUERY_TIMEOUT_MS)
        return int(max(capped, self.settings.OVERPASS_MIN_TIMEOUT_MS))

    def _tier_satisfied(self, attractions: List[PointOfInterest], food: List[PointOfInterest]) -> bool:
        if self.settings.POIS_REQUIRE_BOTH_CATEGORIES:
            return bool(attractions) and bool(food)
        return bool(attractions) or bool(food)


async def _relay(source: asyncio.Event, target: asyncio.Event) -> None:
    await source.wait()
    target.set()
