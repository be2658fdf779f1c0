# map_narrator/core/config.py

from typing import List, Literal, Optional

from pydantic_settings import BaseSettings


DEFAULT_OVERPASS_ENDPOINTS = [
    "https://overpass.kumi.systems/api/interpreter",
    "https://z.overpass-api.de/api/interpreter",
    "https://lz4.overpass-api.de/api/interpreter",
    "https://overpass-api.de/api/interpreter",
]


class Settings(BaseSettings):
    # Narration model (Ollama-style /api/generate)
    LLM_URL: str = "http://localhost:11434/api/generate"
    LLM_TOKEN: Optional[str] = None
    LLM_MODEL: str = "qwen2.5:7b-instruct"
    LLM_TEMPERATURE: float = 0.2
    LLM_NUM_PREDICT: int = 350
    LLM_NUM_CTX: int = 4096
    LLM_TOP_P: float = 0.9
    LLM_REPEAT_PENALTY: float = 1.05
    LLM_KEEP_ALIVE: str = "30s"
    LLM_STOP: List[str] = ["\nEND"]
    LLM_TIMEOUT_S: float = 60.0

    # Schema validation retry loop
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY_MS: int = 1000

    # POI resolution
    POIS_BUDGET_MS: int = 19_000
    OVERPASS_QUERY_TIMEOUT_MS: int = 8000
    OVERPASS_MIN_TIMEOUT_MS: int = 1000
    OVERPASS_ENDPOINTS: List[str] = DEFAULT_OVERPASS_ENDPOINTS
    POIS_REQUIRE_BOTH_CATEGORIES: bool = False
    ALLOWED_NAMES_SCOPE: Literal["selection", "resolved"] = "selection"

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Whole request
    REQUEST_DEADLINE_MS: int = 60_000

    # Reverse geocoding
    NOMINATIM_URL: str = "https://nominatim.openstreetmap.org/reverse"
    USER_AGENT: str = "map-narrator/0.1"

    # Cache TTLs
    POIS_CACHE_TTL_S: int = 60 * 60 * 24
    GEO_CACHE_TTL_S: int = 60 * 60 * 24 * 7

    class Config:
        env_file = ".env"


settings = Settings()
