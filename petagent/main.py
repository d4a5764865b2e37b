"""FastAPI entry-point exposing dispatcher, chat and workflow controls."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from petagent.api.chat import router as chat_router
from petagent.api.routes import dispatcher_router, events_router
from petagent.api.routes import router as agents_router
from petagent.api.workflows import router as workflows_router
from petagent.config import config
from petagent.runtime import get_dispatcher, register_default_agents

logging.basicConfig(
    level=config.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    # Startup: register the built-in agents and start scheduling
    dispatcher = get_dispatcher()
    await register_default_agents(dispatcher)
    await dispatcher.start()
    yield
    # Shutdown: cancel pending work and clean up agents
    await dispatcher.stop()


app = FastAPI(title="Pet Agent Core", lifespan=lifespan)
app.include_router(agents_router)
app.include_router(dispatcher_router)
app.include_router(events_router)
app.include_router(chat_router)
app.include_router(workflows_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "environment": config.environment}
