"""FastAPI application factory.

One process serves the staff-facing ledger API. Night audits are started
by an operator through it; nothing runs on a schedule.
"""

import time

from fastapi import FastAPI, Request, Response

from staybook.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from staybook.observability.logging import get_logger, log_fields

from .routers import public

logger = get_logger(__name__)


async def _trace_request(request: Request, call_next) -> Response:
    """Bind a correlation ID to the request and log how it ended."""
    cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
    token = set_correlation_id(cid)
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "request failed",
            extra=log_fields(method=request.method, path=request.url.path),
        )
        raise
    else:
        response.headers[CORRELATION_ID_HEADER] = cid
        if response.status_code >= 500:
            logger.error(
                "request completed",
                extra=log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - started) * 1000, 1),
                ),
            )
        return response
    finally:
        reset_correlation_id(token)


def create_app() -> FastAPI:
    """Create the ledger API."""
    app = FastAPI(title="Staybook Ledger", docs_url=None, redoc_url=None)
    app.middleware("http")(_trace_request)

    app.include_router(public.router)
    return app
