"""FastAPI application for the HMR document pipeline."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware


def _truthy_env(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


# Prefer explicitly-exported environment variables over values in `.env`.
# Tests can opt out by setting `HMR_SKIP_DOTENV=1`.
if not _truthy_env("HMR_SKIP_DOTENV"):
    try:
        load_dotenv(dotenv_path=Path(__file__).resolve().parents[2] / ".env", override=False)
    except OSError as e:
        logging.getLogger(__name__).warning(
            "Failed to load .env via python-dotenv (%s); proceeding with OS env only",
            type(e).__name__,
        )

from hmr.api.dependencies import Services, build_services  # noqa: E402
from hmr.api.errors import register_error_handlers  # noqa: E402
from hmr.api.routes.extraction import router as extraction_router  # noqa: E402
from hmr.api.routes.generation import router as generation_router  # noqa: E402
from hmr.api.routes.jobs import router as jobs_router  # noqa: E402
from hmr.api.routes.reviews import router as reviews_router  # noqa: E402
from hmr.api.routes.templates import router as templates_router  # noqa: E402
from observability.logging_config import configure_logging, get_logger  # noqa: E402

logger = get_logger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application; tests pass pre-wired ``services``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup: wire services and the autosave timer.

        Shutdown: stop autosave (flushing pending drafts), then the job pool.
        """
        configure_logging()
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        wired: Services = app.state.services
        wired.autosaver.start()
        logger.info("HMR API started", extra={"draft_store": type(wired.drafts).__name__})

        yield  # Application runs

        try:
            await asyncio.wait_for(wired.autosaver.stop(), timeout=wired.render_settings.job_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Autosave flush timed out during shutdown")
        wired.jobs.shutdown(wait=False)

    app = FastAPI(
        title="HMR Document API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS (dev-friendly defaults)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Generation-Summary", "Content-Disposition"],
    )
    register_error_handlers(app)

    app.include_router(extraction_router, prefix="/api")
    app.include_router(reviews_router, prefix="/api")
    app.include_router(templates_router, prefix="/api")
    app.include_router(generation_router, prefix="/api")
    app.include_router(jobs_router, prefix="/api")

    @app.get("/health", tags=["health"])
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()

__all__ = ["app", "create_app"]
