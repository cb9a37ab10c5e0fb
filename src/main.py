"""Entry point for the Twilio to ElevenLabs Conversational AI call bridge."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routes import router as api_router
from api.schemas import MessageResponse
from bridge.errors import BridgeError
from bridge.session_registry import SessionRegistry
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = SessionRegistry()
    app.state.session_registry = registry
    yield
    leaked = list(registry.snapshot())
    if leaked:
        LOGGER.warning("Shutting down with %d unreleased call sessions: %s", len(leaked), ", ".join(leaked))


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Twilio ElevenLabs Call Bridge",
    description="Relays Twilio call audio to an ElevenLabs Conversational AI agent and back.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/", response_model=MessageResponse)
async def root() -> MessageResponse:
    return MessageResponse(message="Server is running")


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
