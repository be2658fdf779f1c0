# map_narrator/main.py

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from map_narrator.api.narrate import router as narrate_router
from map_narrator.core.config import settings
from map_narrator.core.logging_config import configure_logging, logger

configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="Map Narrator Backend",
    version="0.1.0",
)

# Allow the map frontend to call the backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
def health_check():
    return {"status": "ok"}

# Narration stream + debug endpoints
app.include_router(narrate_router, prefix="/api")

logger.info(
    f"Map narrator ready: model={settings.LLM_MODEL} "
    f"pois_budget_ms={settings.POIS_BUDGET_MS} retries={settings.LLM_MAX_RETRIES}"
)


def run() -> None:
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
