# map_narrator/services/prompt_builder.py

from typing import List, Optional

from map_narrator.core.geo import fmt_km
from map_narrator.models.schemas import SENTINEL, CuratedSelection, GeoLabel, PointOfInterest

# Valid JSON, not pseudo-types: small models copy the shape verbatim
JSON_TEMPLATE = """{
  "introParagraph": "",
  "detailParagraph": "",
  "placesToVisit": [
    { "name": "", "distanceKm": 0 },
    { "name": "", "distanceKm": 0 },
    { "name": "", "distanceKm": 0 }
  ],
  "activities": {
    "walk": "",
    "culture": "",
    "foodDrink": ""
  }
}"""

FOOD_LABELS = {"pub", "cafe", "restaurant", "bar"}


def build_prompt(geo: GeoLabel, selection: CuratedSelection) -> str:
    """
    Render the facts-only DATA block followed by the output contract.

    Only names from `selection` appear in the DATA block, so the DATA
    block doubles as the allowed-name list given to the model.
    """
    location_lines = [
        f"- Short: {geo.short_name}",
        f"- Display: {geo.display_name}",
    ]
    if geo.country:
        location_lines.append(f"- Country: {geo.country}")
    if geo.region:
        location_lines.append(f"- Region: {geo.region}")

    attractions_block = _block("Attractions", selection.selected_attractions)
    food_block = _block("Food & Drink", selection.selected_eateries, with_kind=True)
    location = "\n".join(location_lines)

    return f"""Return ONLY a JSON object. It must start with "{{" and end with "}}" and match this template exactly (same keys, same nesting):

{JSON_TEMPLATE}

DATA (facts only; you may only use place names listed here, exact spelling):
<<<
Location:
{location}

{attractions_block}

{food_block}
>>>

RULES:
1) Output ONLY JSON. No markdown. No commentary.
2) placesToVisit: pick 3 names from Attractions. If fewer than 3 exist, use "{SENTINEL}" with distanceKm: 0.
3) detailParagraph must mention each placesToVisit name (except "{SENTINEL}") and include their distances as shown in DATA.
4) activities.walk and activities.culture: generic suggestions, NO place names.
5) activities.foodDrink: if Food & Drink has items, mention 1-2 of those exact names; otherwise "{SENTINEL}".
6) introParagraph/detailParagraph: 2-3 sentences each (50-500 chars).
7) activities.walk, activities.culture, activities.foodDrink: 10-200 chars each.
8) Never mention a place name that is not listed in DATA.

Now output the JSON object:"""


def _block(title: str, pois: List[PointOfInterest], with_kind: bool = False) -> str:
    if not pois:
        return f"{title}:\n- {SENTINEL}"
    return f"{title}:\n" + "\n".join(_line(p, with_kind) for p in pois)


def _line(poi: PointOfInterest, with_kind: bool) -> str:
    line = f"- {poi.name} ({fmt_km(poi.distance_km)} km)"
    kind = _food_label(poi) if with_kind else None
    return f"{line} - {kind}" if kind else line


def _food_label(poi: PointOfInterest) -> Optional[str]:
    return poi.food_kind if poi.food_kind in FOOD_LABELS else None
