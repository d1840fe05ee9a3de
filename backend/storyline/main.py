from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storyline.api.routes import storylines
from storyline.core.config import get_settings
from storyline.core.errors import (
    ConcurrentUpdateError,
    IllegalTransitionError,
    InvalidInputError,
    PipelineError,
    ProviderConfigurationError,
    ProviderError,
    SegmentNotFoundError,
    StorylineNotFoundError,
)
from storyline.core.logging import configure_logging
from storyline.db.session import init_db
from storyline.services.pipeline import StorylinePipeline, build_pipeline
from storyline.services.storage import MinioBlobStorage

logger = structlog.get_logger()

ERROR_STATUS = (
    (StorylineNotFoundError, 404),
    (SegmentNotFoundError, 404),
    (InvalidInputError, 400),
    (IllegalTransitionError, 409),
    (ConcurrentUpdateError, 409),
    (ProviderConfigurationError, 503),
    (ProviderError, 502),
)


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status_code = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _startup(app: FastAPI) -> None:
    settings = get_settings()
    if getattr(app.state, "pipeline", None) is None:
        await init_db()
        try:
            app.state.pipeline = build_pipeline(settings)
        except ProviderConfigurationError as exc:
            logger.warning("startup.pipeline_unavailable", error=str(exc))
            return

    pipeline: StorylinePipeline = app.state.pipeline
    if isinstance(pipeline.storage, MinioBlobStorage):
        await pipeline.storage.ensure_buckets(
            [settings.image_bucket, settings.video_bucket, settings.original_video_bucket]
        )
    resumed = await pipeline.resume_video_polling()
    logger.info("startup.ready", resumed_video_jobs=resumed)


def create_app(pipeline: Optional[StorylinePipeline] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await _startup(app)
        yield
        current = getattr(app.state, "pipeline", None)
        if current is not None and current.poller is not None:
            current.poller.cancel_all()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.backend_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.include_router(storylines.router, prefix="/api")

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    return app


app = create_app()
