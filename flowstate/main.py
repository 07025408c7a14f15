"""
FlowState - FastAPI Application Entry Point.

Serves the built-in workflows over HTTP and WebSocket.
"""

from contextlib import asynccontextmanager
from typing import Dict, Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from flowstate.config import settings
from flowstate.api.routes import runs, websocket
from flowstate.api.routes import workflows as workflow_routes
from flowstate.engine.graph import CompiledGraph
from flowstate.storage.memory import RunStorage
from flowstate.workflows import create_default_workflows


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


DESCRIPTION = """
## Workflow Engine API

Declarative workflow graphs over a typed, reducer-merged state.

### Features
- **Steps**: Functions that read the state and return a partial update
- **Reducers**: Per-field merge rules for those updates
- **Routers**: Conditional edges choosing the next step from the state
- **Bounded cycles**: Retry loops with a per-run step ceiling
- **Real-time Updates**: WebSocket streaming of every intermediate state

### Quick Start
1. List workflows: `GET /workflows`
2. Run one: `POST /workflows/{name}/run`
3. Check a run: `GET /runs/{run_id}`
"""


def create_app(workflows: Optional[Dict[str, CompiledGraph]] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        workflows: Compiled workflows to serve by name. When omitted the
            built-in workflows are compiled from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

        clients = []
        if workflows is None:
            app.state.workflows, clients = create_default_workflows(settings)
        else:
            app.state.workflows = dict(workflows)
        app.state.run_storage = RunStorage()
        logger.info(f"Serving workflows: {sorted(app.state.workflows)}")

        yield

        # Shutdown
        logger.info("Shutting down...")
        for client in clients:
            await client.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        description=DESCRIPTION,
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
    app.include_router(workflow_routes.router)
    app.include_router(runs.router)
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
            "description": "A declarative workflow graph engine",
            "docs": "/docs",
            "redoc": "/redoc",
            "endpoints": {
                "workflows": "/workflows",
                "runs": "/runs",
                "websocket_run": "/ws/run/{name}",
            },
            "workflows": sorted(app.state.workflows),
        }

    @app.get("/health", tags=["Root"])
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "workflows_count": len(app.state.workflows),
            "runs_count": len(app.state.run_storage),
        }

    # ============================================================
    # Error Handlers
    # ============================================================

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

    return app


app = create_app()
