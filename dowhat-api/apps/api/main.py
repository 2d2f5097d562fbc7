from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from apps.api.routes import (
    health,
    discovery,
    venues,
    reliability,
)
from apps.core.config import settings
from apps.discovery.services.discovery_cache import InMemoryDiscoveryCache

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Create FastAPI app
app = FastAPI(
    title="doWhat API",
    description="Nearby activity discovery, venue enrichment and reliability scoring",
    version="1.0.0"
)

# One LRU per process for DISCOVERY_CACHE_BACKEND=memory
app.state.discovery_memory_cache = InMemoryDiscoveryCache()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api")
app.include_router(discovery.router, prefix="/api")
app.include_router(venues.router, prefix="/api")
app.include_router(reliability.router, prefix="/api")

logger = logging.getLogger(__name__)


@app.on_event("startup")
async def log_startup():
    logger.info(
        "startup complete", extra={"env": settings.environment, "port": os.getenv("PORT", "8000")}
    )


@app.get("/")
async def root():
    return {"message": "doWhat API", "version": "1.0.0"}
