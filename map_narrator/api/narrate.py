# map_narrator/api/narrate.py

import asyncio
from functools import lru_cache
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from map_narrator.agents.parent_agent import NarratorParentAgent
from map_narrator.core.config import settings
from map_narrator.core.logging_config import logger
from map_narrator.models.schemas import (
    CuratedSelection,
    GeoLabel,
    GeoPoint,
    NarrateRequest,
    PoisResult,
)
from map_narrator.services.stream_framer import frame_events

router = APIRouter()

DISCONNECT_POLL_S = 0.5


@lru_cache
def get_parent_agent() -> NarratorParentAgent:
    return NarratorParentAgent(settings)


class DebugPoisResponse(BaseModel):
    pois: PoisResult
    selection: CuratedSelection


class DebugPromptResponse(BaseModel):
    prompt: str
    allowed_names: List[str]


@router.post("/narrate")
async def narrate_endpoint(
    payload: NarrateRequest,
    request: Request,
    agent: NarratorParentAgent = Depends(get_parent_agent),
):
    """
    Stream META, narrative segments and END as server-sent events.
    """
    return StreamingResponse(
        narration_stream(agent, payload.to_point(), request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


async def watch_disconnect(
    is_disconnected: Callable[[], Awaitable[bool]],
    cancel: asyncio.Event,
    interval_s: float = DISCONNECT_POLL_S,
) -> None:
    """Set `cancel` once the client has gone away."""
    while not cancel.is_set():
        if await is_disconnected():
            logger.info("Narrate: client disconnected, cancelling pipeline")
            cancel.set()
            return
        await asyncio.sleep(interval_s)


async def narration_stream(
    agent: NarratorParentAgent,
    point: GeoPoint,
    is_disconnected: Callable[[], Awaitable[bool]],
) -> AsyncIterator[str]:
    cancel = asyncio.Event()
    watcher = asyncio.ensure_future(watch_disconnect(is_disconnected, cancel))
    try:
        async for chunk in frame_events(agent.narrate_events(point, cancel=cancel), is_disconnected):
            yield chunk
    finally:
        watcher.cancel()


@router.get("/debug/pois", response_model=DebugPoisResponse)
async def debug_pois(
    lat: float = Query(..., ge=-90, le=90, description="Latitude"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude"),
    agent: NarratorParentAgent = Depends(get_parent_agent),
):
    """
    Debug endpoint to inspect the resolver and the curated selection.
    Example: /api/debug/pois?lat=50.082&lon=-5.4265
    """
    prepared = await agent.prepare(GeoPoint(lat=lat, lon=lon))
    return DebugPoisResponse(pois=prepared.pois, selection=prepared.selection)


@router.get("/debug/geocode", response_model=Optional[GeoLabel])
async def debug_geocode(
    lat: float = Query(..., ge=-90, le=90, description="Latitude"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude"),
    agent: NarratorParentAgent = Depends(get_parent_agent),
):
    """
    Debug endpoint to verify the Nominatim client.
    Example: /api/debug/geocode?lat=50.082&lon=-5.4265
    """
    return await agent.geocoder.reverse_geocode(GeoPoint(lat=lat, lon=lon))


@router.get("/debug/prompt", response_model=DebugPromptResponse)
async def debug_prompt(
    lat: float = Query(..., ge=-90, le=90, description="Latitude"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude"),
    agent: NarratorParentAgent = Depends(get_parent_agent),
):
    """
    Debug endpoint showing exactly what the model would be asked.
    """
    prepared = await agent.prepare(GeoPoint(lat=lat, lon=lon))
    return DebugPromptResponse(prompt=prepared.prompt, allowed_names=sorted(prepared.allowed_names))
