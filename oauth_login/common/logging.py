"""
Logging middleware and loguru configuration.

Every request gets a trace id bound to the loguru context together with its
method, path, client address, duration and status code.
"""

import sys
import time
import uuid
from collections.abc import Callable
from pathlib import Path

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from oauth_login.core.settings import settings

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | trace_id={extra[trace_id]} | "
    "{extra[method]} {extra[path]} | {name}:{function}:{line} | {message}"
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """HTTP request logging middleware"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        method = request.method
        path = request.url.path
        client_host = request.client.host if request.client else "unknown"

        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.trace_id = trace_id
        log = logger.bind(trace_id=trace_id, method=method, path=path, client=client_host)

        log.info("request.start")

        try:
            with logger.contextualize(trace_id=trace_id, method=method, path=path, client=client_host):
                response = await call_next(request)

            process_time = time.time() - start_time
            status_code = response.status_code
            message = f"request.completed status={status_code} duration={process_time:.3f}s"

            if status_code >= 500:
                log.error(message)
            elif status_code >= 400:
                log.warning(message)
            else:
                log.info(message)

            response.headers["X-Process-Time"] = str(process_time)
            response.headers["X-Trace-Id"] = trace_id
            return response

        except Exception as e:
            process_time = time.time() - start_time
            log.opt(exception=True).error(f"request.failed duration={process_time:.3f}s error={type(e).__name__}")
            raise


def setup_logging(level: str | None = None, log_dir: str | None = None) -> None:
    """
    Configure loguru sinks.

    Console output is always enabled; file sinks (all logs plus an error-only
    file) are added when a log directory is configured and writable.
    """
    level = (level or settings.log_level).upper()
    log_dir = log_dir if log_dir is not None else settings.log_dir

    logger.configure(extra={"trace_id": "-", "method": "-", "path": "-", "client": "-"})
    logger.remove()

    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "trace_id={extra[trace_id]} | "
            "{extra[method]} {extra[path]} | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=level,
        colorize=True,
    )

    if log_dir:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            logger.add(
                str(Path(log_dir) / "app.log"),
                rotation="100 MB",
                retention="30 days",
                compression="zip",
                format=LOG_FORMAT,
                level=level,
            )
            logger.add(
                str(Path(log_dir) / "error.log"),
                rotation="50 MB",
                retention="30 days",
                compression="zip",
                format=LOG_FORMAT,
                level="ERROR",
            )
        except (PermissionError, OSError):
            # Read-only filesystems fall back to console output only
            pass

    logger.info(f"Logging initialized (level={level})")
