"""Porthleven, a Cornish fishing village, from resolved POIs to a validated narration."""

import asyncio
import re

from conftest import PORTHLEVEN, PORTHLEVEN_GEO, FakeGeocoder, FakeLLM, FakePlaces, make_settings, poi
from map_narrator.agents.narration_agent import NarrationAgent
from map_narrator.agents.parent_agent import NarratorParentAgent
from map_narrator.models.schemas import PoisResult
from map_narrator.services.stream_framer import END_EVENT, decode_stream, encode_event

ATTRACTIONS = [
    poi("Bickford-Smith Institute", score=12, bucket="history", distance_km=0.21),
    poi("Loe Bar", score=9, bucket="scenic", distance_km=1.94),
    poi("Porthleven Gallery", score=7, bucket="culture", distance_km=0.35),
]
FOOD = [
    poi("The Ship Inn", "food", score=7, food_kind="pub", distance_km=0.12),
    poi("Nauti but Nice", "food", score=6, food_kind="cafe", distance_km=0.18),
    poi("Kota", "food", score=5, food_kind="restaurant", distance_km=0.25),
    poi("Harbour Inn", "food", score=5, food_kind="pub", distance_km=0.3),
]

FACT_LINE = re.compile(r"^- (.+?) \((\d+\.\d) km\)")

COMPLIANT = {
    "introParagraph": "Porthleven is a working fishing village on the south Cornish coast, built around a granite harbour.",
    "detailParagraph": (
        "The clock tower of the Bickford-Smith Institute (0.2 km) watches over the harbour, "
        "Porthleven Gallery (0.3 km) sits on the quay, and Loe Bar (1.9 km) lies along the coast."
    ),
    "placesToVisit": [
        {"name": "Bickford-Smith Institute", "distanceKm": 0.2},
        {"name": "Porthleven Gallery", "distanceKm": 0.3},
        {"name": "Loe Bar", "distanceKm": 1.9},
    ],
    "activities": {
        "walk": "Follow the coast path west along the cliffs.",
        "culture": "Look for old net lofts and chapels in the lanes.",
        "foodDrink": "Finish with a drink at The Ship Inn or a coffee at Nauti but Nice.",
    },
}


def build():
    settings = make_settings()
    llm = FakeLLM([COMPLIANT])
    agent = NarratorParentAgent(
        settings,
        places_agent=FakePlaces(PoisResult(attractions=ATTRACTIONS, food=FOOD)),
        narration_agent=NarrationAgent(settings, llm=llm),
        geocoder=FakeGeocoder(PORTHLEVEN_GEO),
    )
    return agent, llm


def test_selection_prompt_and_first_attempt_validation():
    agent, llm = build()

    prepared = asyncio.run(agent.prepare(PORTHLEVEN))
    attractions = prepared.selection.selected_attractions
    eateries = prepared.selection.selected_eateries

    assert {p.bucket for p in attractions} == {"history", "scenic", "culture"}
    assert attractions[0].name == "Bickford-Smith Institute"
    assert {p.food_kind for p in eateries[:3]} == {"pub", "cafe", "restaurant"}
    assert eateries[3].name == "Harbour Inn"

    block = prepared.prompt.split("<<<", 1)[1].split(">>>", 1)[0]
    facts = [m.groups() for m in (FACT_LINE.match(line) for line in block.splitlines()) if m]
    assert sorted(name for name, _ in facts) == sorted(p.name for p in ATTRACTIONS + FOOD)
    assert ("Loe Bar", "1.9") in facts

    output = asyncio.run(agent.narrate(prepared))
    assert [p.name for p in output.places_to_visit] == [
        "Bickford-Smith Institute",
        "Porthleven Gallery",
        "Loe Bar",
    ]
    assert len(llm.prompts) == 1


def test_streamed_narration_decodes_cleanly():
    agent, _ = build()

    async def run():
        return [event async for event in agent.narrate_events(PORTHLEVEN)]

    events = asyncio.run(run())
    assert events[-1] == END_EVENT

    decoded = decode_stream("".join(encode_event(e) for e in events))
    assert decoded.meta["label"] == "Porthleven"
    assert len(decoded.meta["selection"]["selectedEateries"]) == 4
    assert decoded.narrative.startswith(COMPLIANT["introParagraph"])
    assert (
        "Places to visit: Bickford-Smith Institute (0.2 km); Porthleven Gallery (0.3 km); Loe Bar (1.9 km)"
        in decoded.narrative
    )
    assert decoded.narrative.endswith(
        "Food/Drink: Finish with a drink at The Ship Inn or a coffee at Nauti but Nice."
    )
