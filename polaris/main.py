"""
Polaris API — AI coding agent over a virtual project file tree.

Agent:
  POST /messages         — Send a chat message; starts a process-message run
  POST /messages/cancel  — Cancel the run answering a message

Editor:
  POST /suggestion       — Inline code completion at the cursor
  POST /quick-edit       — Rewrite a selection from an instruction

Config:
  GET  /models           — Providers and active models
  POST /models/set       — Switch models at runtime
  GET  /health           — Healthcheck
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()  # Load .env file for local dev (no-op if missing)

import uvicorn
from fastapi import FastAPI

from . import __version__
from .api import health, llm_config, messages, suggestion
from .core import llm as llm_provider
from .runtime import Runtime, build_runtime

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the app. A runtime passed in is used as-is (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown hooks."""
        logger.info("Starting Polaris API...")
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime()
        await app.state.runtime.start()
        llm_provider.log_provider_status()
        yield
        logger.info("Shutting down...")
        await app.state.runtime.stop()

    app = FastAPI(
        title="Polaris API",
        description="AI coding agent with durable message runs, inline suggestions, quick edit",
        version=__version__,
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    app.include_router(health.router)
    app.include_router(llm_config.router)
    app.include_router(messages.router)
    app.include_router(suggestion.router)
    return app


app = create_app()


def main():
    uvicorn.run(
        "polaris.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
    )


if __name__ == "__main__":
    main()
