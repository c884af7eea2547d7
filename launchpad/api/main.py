"""
launchpad.api.main — FastAPI application entry point
=====================================================

Small operations surface over the sync pipeline: queue metrics and
dead letters, contributor read paths, wallet binding.

Run with::

    uvicorn launchpad.api.main:app --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

load_dotenv()

from launchpad.api.deps import get_engine  # noqa: E402
from launchpad.api.routes.daos import router as daos_router  # noqa: E402
from launchpad.api.routes.queues import router as queues_router  # noqa: E402
from launchpad.errors import ErrorCode, LaunchpadError, user_friendly_message  # noqa: E402

logger = logging.getLogger(__name__)

HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.BAD_PARAMS: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.INVALID_TRADING_STATE: 409,
    ErrorCode.RATE_LIMITED: 429,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    logger.info("Launchpad API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Launchpad API shutting down")


app = FastAPI(
    title="Launchpad Sync API",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(LaunchpadError)
async def launchpad_error_handler(request: Request, exc: LaunchpadError):
    status_code = HTTP_STATUS.get(exc.code, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    headers = {}
    if exc.code == ErrorCode.RATE_LIMITED and exc.retry_after:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code.value, "message": user_friendly_message(exc)},
        headers=headers,
    )


app.include_router(daos_router, prefix="/api")
app.include_router(queues_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
