# map_narrator/services/narration_schema.py

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from map_narrator.models.schemas import SENTINEL, NarrationOutput

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")

# Marks "strategy found nothing"; JSON null is a legitimate parse result
_MISSING = object()


@dataclass
class ValidationResult:
    success: bool
    data: Optional[NarrationOutput] = None
    issues: List[str] = field(default_factory=list)


class JSONExtractionError(ValueError):
    pass


# ---------------- JSON extraction ----------------

def _parse_raw(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return _MISSING


def _parse_fenced(text: str) -> Any:
    match = _FENCE_RE.search(text)
    if not match:
        return _MISSING
    return _parse_raw(match.group(1))


def _parse_embedded(text: str) -> Any:
    """First `{...}` span that decodes as a JSON object."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except ValueError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return _MISSING


EXTRACTION_STRATEGIES: Tuple[Callable[[str], Any], ...] = (
    _parse_raw,
    _parse_fenced,
    _parse_embedded,
)


def extract_json(text: str) -> Any:
    """Try each extraction strategy in order; raise if none finds JSON."""
    for strategy in EXTRACTION_STRATEGIES:
        value = strategy(text)
        if value is not _MISSING:
            return value
    raise JSONExtractionError("No valid JSON found in response")


# ---------------- Validation ----------------

def validate_narration(
    raw: Any,
    allowed_names: Optional[Set[str]] = None,
    attraction_count: Optional[int] = None,
) -> ValidationResult:
    """
    Schema validation, plus allowed-name checks when `allowed_names` is given.

    An empty `allowed_names` set means no facts were resolved: every
    placesToVisit entry and foodDrink must then be the sentinel.
    `attraction_count` is how many attractions were offered to the model;
    only `3 - attraction_count` sentinel places are accepted (none when
    it is unknown).
    """
    try:
        data = NarrationOutput.model_validate(raw)
    except ValidationError as exc:
        return ValidationResult(success=False, issues=_format_issues(exc))

    if allowed_names is None:
        return ValidationResult(success=True, data=data)

    if allowed_names:
        issues = _check_allowed_names(data, allowed_names, attraction_count)
    else:
        issues = _check_sentinel_mode(data)

    if issues:
        return ValidationResult(success=False, issues=issues)
    return ValidationResult(success=True, data=data)


def _check_allowed_names(
    data: NarrationOutput,
    allowed_names: Set[str],
    attraction_count: Optional[int],
) -> List[str]:
    issues: List[str] = []
    places_count = len(data.places_to_visit)
    offered = places_count if attraction_count is None else attraction_count
    max_sentinels = max(0, places_count - offered)

    real_names: List[str] = []
    seen: Set[str] = set()
    sentinels = 0
    for place in data.places_to_visit:
        if place.name == SENTINEL:
            sentinels += 1
            continue
        if place.name not in allowed_names:
            issues.append(f"placesToVisit contains disallowed name: {place.name}")
            continue
        folded = place.name.casefold()
        if folded in seen:
            issues.append(f"placesToVisit repeats name: {place.name}")
            continue
        seen.add(folded)
        real_names.append(place.name)

    if sentinels > max_sentinels:
        issues.append(
            f"placesToVisit uses {SENTINEL!r} {sentinels} time(s) but only "
            f"{max_sentinels} allowed ({offered} attraction(s) available)"
        )

    food_drink = data.activities.food_drink
    if not _is_sentinel(food_drink) and not _mentions_any(food_drink, allowed_names):
        issues.append("activities.foodDrink does not reference any allowed place")

    required = min(2, len(real_names))
    mentioned = [n for n in real_names if _mentions(data.detail_paragraph, n)]
    if len(mentioned) < required:
        missing = [n for n in real_names if n not in mentioned]
        issues.append(
            f"detailParagraph mentions {len(mentioned)} of the places to visit "
            f"(needs {required}); missing: {', '.join(missing)}"
        )

    return issues


def _check_sentinel_mode(data: NarrationOutput) -> List[str]:
    issues = [
        f"placesToVisit.{i}.name must be {SENTINEL!r} when no places were found, got {place.name!r}"
        for i, place in enumerate(data.places_to_visit)
        if place.name != SENTINEL
    ]
    if data.activities.food_drink != SENTINEL:
        issues.append(f"activities.foodDrink must be {SENTINEL!r} when no places were found")
    return issues


def _is_sentinel(text: str) -> bool:
    return text == SENTINEL or "none found" in text.lower()


def _mentions(text: str, name: str) -> bool:
    # case-insensitive so "the old mill" still counts for "Old Mill"
    return name.casefold() in text.casefold()


def _mentions_any(text: str, names: Iterable[str]) -> bool:
    return any(_mentions(text, name) for name in names)


def _format_issues(exc: ValidationError) -> List[str]:
    issues = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err["loc"]) or "<root>"
        issues.append(f"{path}: {err['msg']}")
    return issues
