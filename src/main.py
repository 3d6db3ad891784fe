"""Entry point for the call recorder bridge service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_dispatcher
from api.routes import router as api_router
from config.settings import get_settings
from db.base import dispose_db, init_db

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.openai_api_key:
        if settings.environment == "prod":
            raise RuntimeError("OPENAI_API_KEY is required")
        LOGGER.error("OPENAI_API_KEY not set; calls will record caller audio only")

    await init_db()
    await get_dispatcher().replay_outbox()
    yield
    await dispose_db()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Call Recorder Bridge",
    description="Bridges Twilio media streams to the OpenAI Realtime API and records both sides.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
