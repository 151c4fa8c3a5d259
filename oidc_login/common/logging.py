"""
Request logging and loguru setup.

Every request is logged under a trace id. Query strings are logged with the
OAuth correlation values (`state`, `code`) masked, so log files never hold a
usable state token or authorization code.
"""
# mypy: ignore-errors

import os
import sys
import time
import uuid
from collections.abc import Callable
from typing import Optional
from urllib.parse import parse_qsl, urlencode

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

SENSITIVE_QUERY_PARAMS = frozenset({"state", "code", "id_token", "access_token"})

# Requests not worth a log line
QUIET_PATHS = frozenset({"/"})


def mask_query(query: str) -> str:
    """Replace sensitive query values with their first 4 characters and `...`."""
    if not query:
        return ""
    pairs = [
        (k, f"{v[:4]}..." if k in SENSITIVE_QUERY_PARAMS and v else v)
        for k, v in parse_qsl(query, keep_blank_values=True)
    ]
    return urlencode(pairs, safe=".")


def _format(colorize: bool) -> str:
    if colorize:
        return (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "trace_id={extra[trace_id]} | "
            "{extra[method]} {extra[path]} | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
    return (
        "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | trace_id={extra[trace_id]} | "
        "{extra[method]} {extra[path]} | {name}:{function}:{line} | {message}"
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs start, outcome and duration of each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        path = request.url.path
        trace_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.trace_id = trace_id

        log = logger.bind(
            trace_id=trace_id,
            method=request.method,
            path=path,
            client=request.client.host if request.client else "unknown",
        )
        quiet = path in QUIET_PATHS
        if not quiet:
            query = mask_query(request.url.query)
            log.info(f"request.start{' ?' + query if query else ''}")

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - started
            log.opt(exception=True).error(f"request.failed duration={elapsed:.3f}s error={type(e).__name__}")
            raise

        elapsed = time.perf_counter() - started
        message = f"request.completed status={response.status_code} duration={elapsed:.3f}s"
        if response.status_code >= 500:
            log.error(message)
        elif response.status_code >= 400:
            log.warning(message)
        elif not quiet:
            log.info(message)

        response.headers["X-Trace-Id"] = trace_id
        return response


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """
    Configure loguru: colored stderr output, plus `app.log` / `error.log` with
    rotation under `log_dir` when it is set.
    """
    logger.configure(extra={"trace_id": "-", "method": "-", "path": "-", "client": "-"})
    logger.remove()
    logger.add(sys.stderr, format=_format(colorize=True), level=level, colorize=True)

    if not log_dir:
        return

    try:
        os.makedirs(log_dir, exist_ok=True)
        for filename, file_level, rotation in (
            ("app.log", level, "100 MB"),
            ("error.log", "ERROR", "50 MB"),
        ):
            logger.add(
                os.path.join(log_dir, filename),
                rotation=rotation,
                retention="30 days",
                compression="zip",
                format=_format(colorize=False),
                level=file_level,
            )
    except OSError:
        # e.g. read-only container filesystem
        logger.warning(f"Cannot write logs to {log_dir}, using console only")
