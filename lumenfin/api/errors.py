# =============================================================================
# Exception Handlers — Error Kind → HTTP Status
# =============================================================================
#
# Errors arrive already classified (see lumenfin.exceptions). The mapping
# keeps the three audiences apart:
#
#   user_input     → 400 (415 for an unsupported file type)  end user fixes
#   configuration  → 503                                      operator fixes
#   fatal          → 503 (upstream rejected our credentials)  operator fixes
#   retryable      → 502 (429 + Retry-After when throttled)   retry later
#   partial        → 207 with committed/total counts
#
# Anything unclassified is left to FastAPI's default 500 handler.
# =============================================================================

from __future__ import annotations

import logging
import math

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lumenfin.exceptions import (
    LumenFinError,
    PartialIngestionError,
    RateLimitError,
    UnsupportedFileTypeError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[str, int] = {
    "user_input": 400,
    "configuration": 503,
    "fatal": 503,
    "retryable": 502,
    "partial": 207,
}

DEFAULT_RETRY_AFTER_SECONDS = 30


def status_for(exc: LumenFinError) -> int:
    if isinstance(exc, UnsupportedFileTypeError):
        return 415
    if isinstance(exc, RateLimitError):
        return 429
    return _STATUS_BY_KIND.get(exc.kind, 500)


async def lumenfin_error_handler(request: Request, exc: LumenFinError) -> JSONResponse:
    status_code = status_for(exc)
    body: dict = {"detail": exc.message, "kind": exc.kind, "retryable": exc.retryable}
    headers: dict[str, str] = {}

    if isinstance(exc, RateLimitError):
        retry_after = exc.retry_after or DEFAULT_RETRY_AFTER_SECONDS
        headers["Retry-After"] = str(math.ceil(retry_after))
    if isinstance(exc, PartialIngestionError):
        body.update(committed=exc.committed, total=exc.total)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "%s %s failed with %d (%s): %s",
        request.method, request.url.path, status_code, type(exc).__name__, exc.message,
    )
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LumenFinError, lumenfin_error_handler)
