"""CORS configuration for browser clients of the sync API."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasksync.config import SETTINGS
from tasksync.utils.logger import get_logger

logger = get_logger("tasksync.cors")

# Base allowed origins for development
DEV_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def allowed_origins(frontend_url: str = SETTINGS.frontend_url) -> list:
    origins = list(DEV_ORIGINS)
    if frontend_url and frontend_url not in origins:
        origins.append(frontend_url)
    return origins


def add_cors_middleware(app: FastAPI) -> None:
    """Add CORS middleware to the FastAPI application."""
    if SETTINGS.environment == "production":
        # Production only trusts the configured frontend.
        origins = [SETTINGS.frontend_url] if SETTINGS.frontend_url else []
    else:
        origins = allowed_origins()
    logger.info("CORS configured", environment=SETTINGS.environment, origins=origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )
