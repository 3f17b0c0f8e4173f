"""FastAPI application factory."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .errors import VoiceNotesError
from .metrics import instrument_app
from .metrics import router as metrics_router
from .routers.audio import router as audio_router
from .schemas import ErrorResponse
from .settings import get_settings

LOGGER = logging.getLogger("voicenotes.api")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, version=settings.version)

    @app.exception_handler(VoiceNotesError)
    async def voicenotes_error_handler(request: Request, exc: VoiceNotesError) -> JSONResponse:
        if exc.status_code >= 500:
            LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            LOGGER.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.error_code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.error_code, detail=exc.message).model_dump(),
        )

    instrument_app(app)
    app.include_router(audio_router)
    app.include_router(metrics_router)
    return app


app = create_app()
