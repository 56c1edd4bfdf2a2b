"""FastAPI application setup."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leadsync import __version__
from leadsync.config import load_routing, settings
from leadsync.pipeline import PipelineOrchestrator, build_pipeline
from .routes import router


def create_app(orchestrator: Optional[PipelineOrchestrator] = None) -> FastAPI:
    """Create the status API around an orchestrator (built from settings if omitted)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.orchestrator is None
        if owned:
            app.state.orchestrator = build_pipeline(settings, load_routing())
        yield
        if owned:
            await app.state.orchestrator.aclose()

    app = FastAPI(
        title="leadsync",
        description="Sync triggered CRM contacts into outreach campaigns",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    app.include_router(router, prefix="/api")
    return app


app = create_app()
