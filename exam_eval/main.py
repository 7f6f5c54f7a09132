"""FastAPI entry point: app factory, lifespan wiring and error handlers."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Optional

import redis
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from exam_eval import __version__
from exam_eval.api import router as api_router
from exam_eval.config import Settings, get_settings
from exam_eval.db import Base, build_engine, build_session_factory
from exam_eval.exceptions import AppError
from exam_eval.logging_config import setup_logging
from exam_eval.services.grading import Grader, PlaceholderGrader
from exam_eval.services.grading_queue import GradingQueue
from exam_eval.services.mailer import Mailer
from exam_eval.services.ocr import TextExtractor, build_extractor
from exam_eval.services.otp import InMemoryOtpStore, OtpMailer, OtpService, RedisOtpStore
from exam_eval.services.papers import mark_grading_failed, run_grading_pipeline

logger = logging.getLogger(__name__)


def _build_otp_store(settings: Settings):
    if settings.redis_url:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisOtpStore(client, settings.otp_ttl_seconds)
    return InMemoryOtpStore(settings.otp_ttl_seconds)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    mailer: Optional[OtpMailer] = None,
    extractor: Optional[TextExtractor] = None,
    grader: Optional[Grader] = None,
) -> FastAPI:
    """Application factory.

    Every collaborator can be injected; anything left out is built from
    ``settings``. The OTP store, mailer and grading queue live on
    ``app.state`` for the lifetime of the app.
    """

    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)

        store = _build_otp_store(settings)
        app.state.mailer = mailer or Mailer.from_settings(settings)
        app.state.otp_service = OtpService(store, app.state.mailer)
        job = partial(
            run_grading_pipeline,
            session_factory=session_factory,
            extractor=extractor or build_extractor(settings.ocr_backend),
            grader=grader or PlaceholderGrader(),
        )
        app.state.grading_queue = GradingQueue(
            job,
            workers=settings.grading_workers,
            max_pending=settings.grading_max_pending,
            max_retries=settings.grading_max_retries,
            on_failure=partial(mark_grading_failed, session_factory),
        )
        logger.info(
            "Started with %s grading worker(s), OTP store %s",
            settings.grading_workers, type(store).__name__,
        )
        try:
            yield
        finally:
            app.state.grading_queue.shutdown()
            store.close()
            logger.info("Shut down")

    app = FastAPI(title="Exam Evaluation API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "message": "Invalid request",
                "code": "VALIDATION_ERROR",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    @app.get("/api/health")
    def health() -> dict:
        return {
            "status": "OK",
            "message": "Exam evaluation service is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(api_router)
    return app
