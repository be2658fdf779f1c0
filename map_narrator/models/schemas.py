# map_narrator/models/schemas.py

import math
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

SENTINEL = "None found in data"

Category = Literal["attraction", "food"]
Bucket = Literal["history", "culture", "scenic", "park", "landmark", "food"]
FoodKind = Literal["pub", "cafe", "restaurant", "bar", "other"]


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)

    @field_validator("lat", "lon")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("coordinate must be finite")
        return v

    def rounded(self, digits: int) -> "GeoPoint":
        return GeoPoint(lat=round(self.lat, digits), lon=round(self.lon, digits))


class PointOfInterest(CamelModel):
    model_config = ConfigDict(frozen=True)

    name: str
    category: Category
    lat: float
    lon: float
    distance_km: float = Field(ge=0)
    source_url: Optional[str] = None
    score: int = 0
    bucket: Bucket = "landmark"
    food_kind: Optional[FoodKind] = None
    hint: str = ""

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v

    @model_validator(mode="after")
    def _food_kind_only_for_food(self) -> "PointOfInterest":
        if self.category == "food" and self.food_kind is None:
            raise ValueError("food POIs need a food_kind")
        if self.category != "food" and self.food_kind is not None:
            raise ValueError("food_kind is only valid for food POIs")
        return self

    def dedup_key(self) -> str:
        return f"{self.name.lower()}|{self.lat:.4f}|{self.lon:.4f}|{self.category}"


class PoisResult(CamelModel):
    attractions: List[PointOfInterest] = Field(default_factory=list)
    food: List[PointOfInterest] = Field(default_factory=list)
    budget_exceeded: bool = False
    cache_hit: bool = False
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class CuratedSelection(CamelModel):
    selected_attractions: List[PointOfInterest] = Field(default_factory=list, max_length=3)
    selected_eateries: List[PointOfInterest] = Field(default_factory=list, max_length=6)

    def names(self) -> List[str]:
        return [p.name for p in self.selected_attractions + self.selected_eateries]


class GeoLabel(CamelModel):
    label: str
    display_name: str
    short_name: str
    country: Optional[str] = None
    region: Optional[str] = None
    country_code: Optional[str] = None


# ---------------- Narration output ----------------

class PlaceToVisit(CamelModel):
    name: str = Field(min_length=1)
    distance_km: float = Field(ge=0)


class Activities(CamelModel):
    walk: str = Field(min_length=10, max_length=200)
    culture: str = Field(min_length=10, max_length=200)
    food_drink: str = Field(min_length=10, max_length=200)


class NarrationOutput(CamelModel):
    intro_paragraph: str = Field(min_length=50, max_length=500)
    detail_paragraph: str = Field(min_length=50, max_length=500)
    places_to_visit: List[PlaceToVisit] = Field(min_length=3, max_length=3)
    activities: Activities


# ---------------- Stream metadata ----------------

class NarrationMeta(CamelModel):
    label: str
    geo: Optional[GeoLabel] = None
    image_candidates: List[str] = Field(default_factory=list)
    selection: CuratedSelection = Field(default_factory=CuratedSelection)
    warnings: List[str] = Field(default_factory=list)
    cache_hit: bool = False


class NarrateRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)

    def to_point(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lon=self.lon)
