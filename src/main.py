"""Entry point for the realtime phone assistant service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import router as api_router
from config.settings import get_settings
from tools.base import ServiceContext
from tools.registry import build_default_dispatcher
from utils.redaction import install_log_redaction

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = ServiceContext.from_settings(get_settings())
    app.state.services = services
    app.state.dispatcher = build_default_dispatcher()
    app.state.active_calls = set()
    LOGGER.info("Capabilities: %s", ", ".join(app.state.dispatcher.names))
    try:
        yield
    finally:
        await services.aclose()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
install_log_redaction(settings)

app = FastAPI(
    title="Realtime Phone Assistant",
    description="Relays Twilio phone calls to a realtime speech model with tool calling.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
