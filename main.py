# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.entry.http.views.harvest_view import router as harvest_router
from config import get_settings


def configure_logging() -> None:
    s = get_settings()
    logging.basicConfig(
        level=getattr(logging, (s.LOG_LEVEL or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context.

    Runs once on startup (before the first request) and once on shutdown.
    """
    configure_logging()
    yield


def create_app() -> FastAPI:
    """
    Application factory for the LP fee harvester API.
    """
    app = FastAPI(
        title="LP Fee Harvester API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(harvest_router, prefix="/api")

    return app


app = create_app()
