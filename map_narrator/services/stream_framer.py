# map_narrator/services/stream_framer.py

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from map_narrator.core.geo import fmt_km
from map_narrator.core.logging_config import logger
from map_narrator.models.schemas import NarrationOutput

META_PREFIX = "META:"
ERROR_PREFIX = "ERROR:"
END_EVENT = "END"

# Narrative segments are separated by one blank line when reassembled
SEGMENT_SEPARATOR = "\n\n"

GENERIC_ERROR = "Something went wrong while narrating this place. Please try again."


# ---------------- Encoding ----------------

def encode_event(text: str) -> str:
    """
    Frame one logical event as a server-sent event.

    Every line gets its own `data:` field, so embedded newlines survive and
    a blank line still terminates the event. Only newline splits lines; a carriage
    return stays inside its data line.
    """
    lines = text.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


def meta_event(meta: Any) -> str:
    return META_PREFIX + json.dumps(meta, ensure_ascii=False, separators=(",", ":"))


def error_event(message: str) -> str:
    return ERROR_PREFIX + " " + " ".join(message.split())


def render_narration(output: NarrationOutput) -> str:
    places = "; ".join(f"{p.name} ({fmt_km(p.distance_km)} km)" for p in output.places_to_visit)
    activities = "\n".join(
        [
            f"Walk: {output.activities.walk}",
            f"Culture: {output.activities.culture}",
            f"Food/Drink: {output.activities.food_drink}",
        ]
    )
    return SEGMENT_SEPARATOR.join(
        [
            output.intro_paragraph,
            output.detail_paragraph,
            f"Places to visit: {places}",
            activities,
        ]
    )


def narrative_segments(narrative: str) -> List[str]:
    return narrative.split(SEGMENT_SEPARATOR)


async def frame_events(
    events: AsyncIterator[str],
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """
    Encode an event stream for the wire.

    Guarantees a terminal END even if `events` blows up, and stops quietly
    (no error, no END) once the caller has disconnected.
    """
    ended = False
    try:
        async for event in events:
            if is_disconnected is not None and await is_disconnected():
                logger.info("Stream: client disconnected, stopping")
                return
            yield encode_event(event)
            if event == END_EVENT:
                ended = True
                return
    except Exception as exc:
        logger.exception(f"Stream: pipeline failed mid-stream: {exc}")
        if is_disconnected is not None and await is_disconnected():
            return
        yield encode_event(error_event(GENERIC_ERROR))
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()

    if not ended:
        if is_disconnected is not None and await is_disconnected():
            return
        yield encode_event(END_EVENT)


# ---------------- Decoding ----------------

@dataclass
class DecodedStream:
    meta: Optional[Any] = None
    narrative: str = ""
    error: Optional[str] = None
    ended: bool = False
    segments: List[str] = field(default_factory=list)


def decode_events(payload: str) -> List[str]:
    """Split a framed payload back into logical events."""
    events: List[str] = []
    data_lines: List[str] = []

    for line in payload.split("\n"):
        if line == "":
            if data_lines:
                events.append("\n".join(data_lines))
                data_lines = []
            continue
        if line.startswith("data:"):
            value = line[len("data:"):]
            data_lines.append(value[1:] if value.startswith(" ") else value)

    if data_lines:
        events.append("\n".join(data_lines))
    return events


def decode_stream(payload: str) -> DecodedStream:
    decoded = DecodedStream()
    for event in decode_events(payload):
        if decoded.ended:
            break
        if event == END_EVENT:
            decoded.ended = True
        elif event.startswith(META_PREFIX) and decoded.meta is None and not decoded.segments:
            decoded.meta = json.loads(event[len(META_PREFIX):])
        elif event.startswith(ERROR_PREFIX):
            decoded.error = event[len(ERROR_PREFIX):].strip()
        else:
            decoded.segments.append(event)

    decoded.narrative = SEGMENT_SEPARATOR.join(decoded.segments)
    return decoded
