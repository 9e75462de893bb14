import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geopresence.api.presence import router as presence_router
from geopresence.core.config import settings
from geopresence.services.hub import PresenceHub
from geopresence.services.provider import HttpLocationProvider

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the provider client and subscription hub; stop every poller on shutdown."""
    logging.getLogger("geopresence").setLevel(settings.LOG_LEVEL.upper())

    provider = HttpLocationProvider()
    app.state.hub = PresenceHub(provider)
    app.state.hub.start_reaper()
    logger.info("Provider: %s (poll every %.1fs)", settings.PROVIDER_BASE_URL, settings.POLL_INTERVAL_SEC)

    yield

    logger.info("Shutting down GeoPresence backend.")
    await app.state.hub.stop_all()
    await provider.aclose()


app = FastAPI(
    title="GeoPresence API",
    description="Live map of field staff attendance: who is where, and since when.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(presence_router, prefix="/api/presence", tags=["Presence"])


@app.get("/health", tags=["System"])
async def health_check() -> dict:
    return {"status": "ok"}
