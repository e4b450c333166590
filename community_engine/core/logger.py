import logging
import sys
import time
import uuid
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler

import structlog
from structlog.dev import ConsoleRenderer
from fastapi import FastAPI, Request

from community_engine.core.config import settings


LOGS_DIR = Path(settings.LOG_DIR)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

SLOW_REQUEST_MS = 1000
REQUEST_ID_HEADER = "X-Request-ID"

# noisy third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


SHARED = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=SHARED,
    )


def _rotating_file(name: str, level: int, keep_days: int) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        str(LOGS_DIR / name),
        when="midnight",
        backupCount=keep_days,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def configure_logging():
    level = logging.DEBUG if settings.DEBUG else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    for name, cap in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_formatter(ConsoleRenderer(colors=settings.ENV == "dev")))
    root.addHandler(console)

    # daily.log keeps INFO/WARNING, errors.log keeps ERROR and above
    daily = _rotating_file("daily.log", logging.INFO, keep_days=7)
    daily.addFilter(lambda record: record.levelno < logging.ERROR)
    root.addHandler(daily)
    root.addHandler(_rotating_file("errors.log", logging.ERROR, keep_days=30))

    structlog.configure(
        processors=[
            *SHARED,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("community_engine")
reqlog = structlog.get_logger("community_engine.requests")


async def logging_middleware(request: Request, call_next):
    """Tag every log line emitted while serving the request with its request id."""
    start = time.perf_counter()
    req_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=req_id,
        method=request.method,
        path=request.url.path,
    )
    log = reqlog.bind(client=request.client.host if request.client else None)

    try:
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000

        if response.status_code >= 500:
            log.error("request_failed", status=response.status_code, ms=ms)
        elif response.status_code >= 400:
            log.warning("request_client_error", status=response.status_code, ms=ms)
        elif ms >= SLOW_REQUEST_MS:
            log.warning("request_slow", ms=ms)

        response.headers[REQUEST_ID_HEADER] = req_id
        return response

    except Exception:
        log.error("request_crashed", ms=(time.perf_counter() - start) * 1000, exc_info=True)
        raise

    finally:
        structlog.contextvars.unbind_contextvars("request_id", "method", "path")


def register_logger(app: FastAPI):
    app.middleware("http")(logging_middleware)

    @app.on_event("startup")
    async def _startup():
        logger.info("startup", project=settings.PROJECT_NAME, env=settings.ENV)

    @app.on_event("shutdown")
    async def _shutdown():
        logger.info("shutdown")
