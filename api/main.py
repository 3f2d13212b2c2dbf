"""
AirSync — FastAPI Application Entry Point
"""
import logging
import os
from contextlib import asynccontextmanager

from alembic.config import Config
from alembic import command as alembic_command

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.database import DATABASE_URL
from api.routes import sync

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Run database migrations ───────────────────────────────────────────────
    try:
        alembic_cfg = Config("alembic.ini")
        alembic_cfg.set_main_option("sqlalchemy.url", os.getenv("DATABASE_URL", DATABASE_URL))
        alembic_command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations applied successfully")
    except Exception as e:
        logger.error("Migration failed: %s", e)
        raise

    logger.info("AirSync API starting up")
    yield
    logger.info("AirSync API shutting down")


app = FastAPI(
    title="AirSync API",
    description="Operational surface for the hourly air-quality sync",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(sync.router, prefix="/api/sync", tags=["Sync"])


@app.get("/api/health", tags=["Health"])
def health():
    return {"status": "ok", "service": "airsync-api", "version": "1.0.0"}
