"""
FastAPI application entry point for the Pulse CRM API.

Configures logging and CORS, registers the API routers and manages the
storage lifecycle:

- DATABASE_URL set: the asyncpg pool is opened at startup, the CRM tables are
  created if missing, and the pool is closed at shutdown.
- DATABASE_URL missing: requests are served from the in-memory demo store;
  SEED_DEMO_ON_STARTUP=true fills it with demo data at boot.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from pulse_backend import __version__
from pulse_backend.core.config import get_settings
from pulse_backend.core.database import init_db, close_db
from pulse_backend.core.dependencies import SettingsDep, StoreDep, get_store
from pulse_backend.services.store import PostgresCrmStore
from pulse_backend.api import api_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: open the database pool and create tables (PostgreSQL mode) or
    optionally seed demo data (in-memory mode).

    Shutdown: close the database pool.
    """
    settings = get_settings()
    logger.info("Pulse CRM API starting")

    if settings.database_url:
        try:
            await init_db()
            store = get_store()
            if isinstance(store, PostgresCrmStore):
                await store.ensure_schema()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            # Keep serving; store calls will report the failure per request
    elif settings.seed_demo_on_startup:
        seeded = await get_store().seed_demo()
        logger.info(f"Demo data loaded: {seeded}")

    yield

    logger.info("Pulse CRM API shutting down")
    if settings.database_url:
        try:
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.error(f"Error closing database pool: {e}")


# Create FastAPI application
app = FastAPI(
    title="Pulse CRM API",
    version=__version__,
    description=(
        "FastAPI backend for Pulse CRM. Provides deal, contact and task "
        "management, deal/contact scoring, risk classification, pipeline "
        "alerts, daily digests and AI-assisted suggestions."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers (deals, contacts, tasks, insights, ai)
app.include_router(api_router)


@app.get("/health")
async def health_check(settings: SettingsDep):
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy' and the active storage mode
    """
    return {
        "status": "healthy",
        "storage": "postgres" if settings.database_url else "memory",
    }


@app.get("/")
async def root():
    return {
        "name": "Pulse CRM API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.post("/seed-demo")
async def seed_demo(store: StoreDep) -> Dict[str, Any]:
    """
    Load the demo deals, contacts and tasks.

    In memory the store is replaced by the demo set; in PostgreSQL the demo
    rows are inserted next to existing data.
    """
    try:
        seeded = await store.seed_demo()
        return {"success": True, "seeded": seeded}
    except Exception as e:
        logger.error(f"Error seeding demo data: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to seed demo data: {str(e)}")


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pulse_backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
