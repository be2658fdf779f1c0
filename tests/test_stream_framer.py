import asyncio

from conftest import narration_payload
from map_narrator.models.schemas import NarrationOutput
from map_narrator.services.stream_framer import (
    END_EVENT,
    GENERIC_ERROR,
    decode_events,
    decode_stream,
    encode_event,
    error_event,
    frame_events,
    meta_event,
    narrative_segments,
    render_narration,
)


async def collect(agen) -> str:
    return "".join([chunk async for chunk in agen])


async def events_from(items):
    for item in items:
        yield item


def test_multiline_event_stays_one_event():
    framed = encode_event("Walk: coast path\nCulture: chapels")
    assert framed == "data: Walk: coast path\ndata: Culture: chapels\n\n"
    assert decode_events(framed) == ["Walk: coast path\nCulture: chapels"]


def test_blank_lines_inside_an_event_survive():
    assert decode_events(encode_event("one\n\ntwo")) == ["one\n\ntwo"]


def test_distinct_events_stay_distinct():
    payload = encode_event("a") + encode_event("b") + encode_event(END_EVENT)
    assert decode_events(payload) == ["a", "b", "END"]


def test_round_trip_meta_and_narrative():
    meta = {"label": "Porthleven", "imageCandidates": ["Porthleven"], "selection": {"selectedAttractions": []}}
    narrative = "Intro line.\n\nDetail line.\n\nPlaces to visit: A (0.1 km)\n\nWalk: x\nCulture: y\nFood/Drink: z"
    events = [meta_event(meta), *narrative_segments(narrative), END_EVENT]

    payload = "".join(encode_event(e) for e in events)
    decoded = decode_stream(payload)

    assert decoded.meta == meta
    assert decoded.narrative == narrative
    assert decoded.ended
    assert decoded.error is None


def test_round_trip_keeps_carriage_returns():
    narrative = "Intro line one.\r\nStill intro.\n\nDetail.\r"
    payload = "".join(encode_event(e) for e in [*narrative_segments(narrative), END_EVENT])

    assert "data: Intro line one.\r\ndata: Still intro.\n" in payload
    assert decode_stream(payload).narrative == narrative


def test_render_narration_layout():
    output = NarrationOutput.model_validate(
        narration_payload(["Old Mill", "Harbor View", "Chapel Rock"], distances=[0.44, 0.8, 1.25])
    )
    text = render_narration(output)
    parts = text.split("\n\n")

    assert parts[0] == output.intro_paragraph
    assert parts[1] == output.detail_paragraph
    assert parts[2] == "Places to visit: Old Mill (0.4 km); Harbor View (0.8 km); Chapel Rock (1.2 km)"
    assert parts[3].split("\n") == [
        "Walk: Follow the coast path along the cliffs at low tide.",
        "Culture: Look for old net lofts and fishermen's chapels.",
        "Food/Drink: Stop for a pint at The Ship Inn by the harbour.",
    ]


def test_error_event_is_single_line():
    assert error_event("Something\nbroke   badly") == "ERROR: Something broke badly"


def test_frame_events_passes_through_and_stops_at_end():
    payload = asyncio.run(collect(frame_events(events_from(["META:{}", "text", END_EVENT, "late"]))))
    assert decode_events(payload) == ["META:{}", "text", "END"]


def test_frame_events_appends_end_when_missing():
    payload = asyncio.run(collect(frame_events(events_from(["META:{}", "text"]))))
    assert decode_events(payload)[-1] == END_EVENT


def test_frame_events_turns_crash_into_error_then_end():
    async def broken():
        yield "META:{}"
        raise RuntimeError("boom")

    decoded = decode_stream(asyncio.run(collect(frame_events(broken()))))
    assert decoded.meta == {}
    assert decoded.error == GENERIC_ERROR
    assert decoded.ended


def test_frame_events_stops_silently_after_disconnect():
    state = {"checks": 0}

    async def is_disconnected():
        state["checks"] += 1
        return state["checks"] > 1

    payload = asyncio.run(
        collect(frame_events(events_from(["META:{}", "text", END_EVENT]), is_disconnected=is_disconnected))
    )
    assert decode_events(payload) == ["META:{}"]


def test_frame_events_skips_end_when_client_left_during_a_silent_stream():
    async def is_disconnected():
        return True

    payload = asyncio.run(collect(frame_events(events_from([]), is_disconnected=is_disconnected)))
    assert payload == ""
