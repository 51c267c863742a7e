"""
EventFlow - FastAPI Application Entry Point.

An event-driven workflow engine with human-in-the-loop interrupts.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from eventflow.config import settings
from eventflow.api.routes import websocket, workflows
from eventflow.api.routes.workflows import get_snapshot_store
from eventflow.engine.errors import SnapshotNotFoundError
from eventflow.storage.sql import SqlSnapshotStore
from eventflow.workflows.content_review import WORKFLOW_NAME, register_content_review_workflow


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    store = get_snapshot_store(app)
    if isinstance(store, SqlSnapshotStore):
        await store.init_schema()
    logger.info(f"Snapshot store: {type(store).__name__} ({settings.PERSISTENCE_BACKEND})")

    # Register the demo workflow
    await register_content_review_workflow()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await store.close()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Engine API

An event-driven workflow engine: nodes consume typed events and produce new
ones, and the graph routes each event to the one node that consumes it.

### Features
- **Events**: Typed messages; each event type has exactly one consumer
- **Nodes**: Python functions (sync or async) that read and modify shared state
- **Loops**: A node may produce an event that routes back to an earlier node
- **Human in the loop**: A node can suspend the run and resume it with feedback
- **Persistence**: Snapshots in memory, on disk or in a SQL database
- **Real-time Updates**: WebSocket streaming of every produced event

### Quick Start
1. List workflows: `GET /workflows/`
2. Start a run: `POST /workflows/content-review/run`
3. Answer the interrupt: `POST /workflows/content-review/runs/{workflow_id}/wakeup`
4. Check the run: `GET /workflows/runs/{workflow_id}`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(workflows.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "An event-driven workflow engine with human-in-the-loop interrupts",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "workflows": "/workflows",
            "runs": "/workflows/runs/{workflow_id}",
            "websocket_run": "/ws/run/{name}",
        },
        "demo_workflow": WORKFLOW_NAME,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    from eventflow.storage.memory import run_storage, workflow_storage

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "persistence_backend": settings.PERSISTENCE_BACKEND,
        "workflows_count": len(workflow_storage),
        "runs_count": len(run_storage),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(SnapshotNotFoundError)
async def snapshot_not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Not Found", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
