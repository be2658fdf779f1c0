# map_narrator/agents/parent_agent.py

import asyncio
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Set

from map_narrator.agents.narration_agent import NarrationAgent
from map_narrator.agents.places_agent import PlacesAgent
from map_narrator.core.cache import CacheStore, MemoryCache
from map_narrator.core.config import Settings
from map_narrator.core.errors import (
    NarrationTimeoutError,
    NarrationValidationError,
    RequestCancelled,
)
from map_narrator.core.logging_config import logger
from map_narrator.models.schemas import (
    CuratedSelection,
    GeoLabel,
    GeoPoint,
    NarrationMeta,
    NarrationOutput,
    PoisResult,
)
from map_narrator.services.nominatim_client import NominatimClient, fallback_label, image_candidates
from map_narrator.services.prompt_builder import build_prompt
from map_narrator.services.selection import curate
from map_narrator.services.stream_framer import (
    END_EVENT,
    error_event,
    meta_event,
    narrative_segments,
    render_narration,
)

INVALID_OUTPUT_MESSAGE = (
    "Could not produce a valid structured narration for this place. Please try again."
)
TIMEOUT_MESSAGE = "Narration took too long. Please try again."
GENERIC_MESSAGE = "Narration failed. Please try again in a moment."


@dataclass
class PreparedNarration:
    """Everything decided before the model is called."""

    geo: GeoLabel
    pois: PoisResult
    selection: CuratedSelection
    prompt: str
    allowed_names: Set[str]
    meta: NarrationMeta


class NarratorParentAgent:
    """
    Parent agent that:
      - resolves a location label and nearby POIs in parallel
      - curates a small, diverse fact set
      - asks the narration agent for a validated structured narration
      - emits META, narrative segments and END as plain text events
    """

    def __init__(
        self,
        settings: Settings,
        places_agent: Optional[PlacesAgent] = None,
        narration_agent: Optional[NarrationAgent] = None,
        geocoder: Optional[NominatimClient] = None,
        cache: Optional[CacheStore] = None,
    ) -> None:
        self.settings = settings
        cache = cache if cache is not None else MemoryCache()
        self.places_agent = places_agent or PlacesAgent(settings, cache=cache)
        self.narration_agent = narration_agent or NarrationAgent(settings)
        self.geocoder = geocoder or NominatimClient(settings, cache=cache)

    # ---------------- Fact gathering ----------------

    async def prepare(self, point: GeoPoint, cancel: Optional[asyncio.Event] = None) -> PreparedNarration:
        geo_task = asyncio.ensure_future(self.geocoder.reverse_geocode(point))
        pois_task = asyncio.ensure_future(self.places_agent.resolve(point, cancel=cancel))
        try:
            geo, pois = await asyncio.gather(geo_task, pois_task)
        except BaseException:
            # gather leaves the surviving sibling running
            for task in (geo_task, pois_task):
                task.cancel()
            raise
        geo = geo or fallback_label(point)

        if pois.error:
            logger.warning(f"ParentAgent: continuing without facts ({pois.error})")

        selection = curate(pois.attractions, pois.food)
        allowed_names = self._allowed_names(pois, selection)
        prompt = build_prompt(geo, selection)

        meta = NarrationMeta(
            label=geo.label,
            geo=geo,
            image_candidates=image_candidates(geo),
            selection=selection,
            warnings=list(pois.warnings),
            cache_hit=pois.cache_hit,
        )

        logger.info(
            f"ParentAgent: prepared {geo.label!r} with "
            f"{len(selection.selected_attractions)} attractions, "
            f"{len(selection.selected_eateries)} eateries"
        )
        return PreparedNarration(
            geo=geo,
            pois=pois,
            selection=selection,
            prompt=prompt,
            allowed_names=allowed_names,
            meta=meta,
        )

    def _allowed_names(self, pois: PoisResult, selection: CuratedSelection) -> Set[str]:
        if self.settings.ALLOWED_NAMES_SCOPE == "resolved":
            return {p.name for p in pois.attractions + pois.food}
        return set(selection.names())

    # ---------------- Streaming ----------------

    async def narrate_events(
        self,
        point: GeoPoint,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """
        Yield META first, then narrative segments (or a single error line),
        then END. Caller cancellation ends the generator without output.
        """
        deadline = time.monotonic() + self.settings.REQUEST_DEADLINE_MS / 1000

        try:
            prepared = await self.prepare(point, cancel=cancel)
        except RequestCancelled:
            logger.info("ParentAgent: caller cancelled during fact gathering")
            return
        except Exception as exc:
            logger.exception(f"ParentAgent: fact gathering failed: {exc}")
            geo = fallback_label(point)
            yield meta_event(NarrationMeta(label=geo.label, geo=geo).model_dump(by_alias=True, mode="json"))
            yield error_event(GENERIC_MESSAGE)
            yield END_EVENT
            return

        yield meta_event(prepared.meta.model_dump(by_alias=True, mode="json"))

        if cancel is not None and cancel.is_set():
            return

        try:
            output = await self.narrate(prepared, deadline=deadline)
        except NarrationValidationError as exc:
            logger.error(f"ParentAgent: {exc}")
            yield error_event(INVALID_OUTPUT_MESSAGE)
        except NarrationTimeoutError as exc:
            logger.error(f"ParentAgent: {exc}")
            yield error_event(TIMEOUT_MESSAGE)
        except Exception as exc:
            logger.exception(f"ParentAgent: narration failed: {exc}")
            yield error_event(GENERIC_MESSAGE)
        else:
            for segment in narrative_segments(render_narration(output)):
                if cancel is not None and cancel.is_set():
                    return
                yield segment

        yield END_EVENT

    async def narrate(self, prepared: PreparedNarration, deadline: Optional[float] = None) -> NarrationOutput:
        return await self.narration_agent.generate(
            prepared.prompt,
            allowed_names=prepared.allowed_names,
            attraction_count=len(prepared.selection.selected_attractions),
            deadline=deadline,
        )
