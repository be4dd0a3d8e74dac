"""Main FastAPI application for the task sync backend."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tasksync import __version__
from tasksync.config import SETTINGS
from tasksync.db.init import init_db
from tasksync.errors import TaskSyncError
from tasksync.middleware.cors import add_cors_middleware
from tasksync.middleware.rate_limit import build_rate_limiter
from tasksync.routers import auth, tasks
from tasksync.utils.logger import get_logger
from tasksync.utils.metrics import metrics_collector

VERSION = __version__

logger = get_logger("tasksync.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database tables on startup."""
    try:
        init_db()
    except SQLAlchemyError:
        logger.exception("Database initialization failed; storage calls will fail until it is reachable")
    logger.info("Application startup complete", version=VERSION)
    yield


# Create FastAPI application
app = FastAPI(
    title="Task Sync API",
    description="Offline-first task storage with multi-device synchronization and conflict detection",
    version=VERSION,
    lifespan=lifespan,
)

# Add CORS middleware
add_cors_middleware(app)

app.state.rate_limiter = build_rate_limiter()


@app.exception_handler(TaskSyncError)
async def task_sync_error_handler(request: Request, exc: TaskSyncError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal storage error"})


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root():
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to the Task Sync API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "sync": "/api/tasks/sync",
    }


@app.get("/metrics")
async def metrics():
    """Sync counters and timers for this process."""
    return metrics_collector.get_metrics()


app.include_router(auth.router, prefix="/auth")  # Auth endpoints: /auth/sign-up, /auth/sign-in
app.include_router(tasks.router, prefix="/api")  # Task endpoints: /api/tasks/...


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tasksync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=SETTINGS.environment == "development",
    )
