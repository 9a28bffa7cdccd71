"""Health routes.

/health answers as long as the process serves requests. /health/db also
round-trips the database, for load balancers that should stop routing
webhooks to an instance that cannot store them.
"""

import psycopg2
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from evoinbox.infra.db import fetchone, txn
from evoinbox.observability.logging import get_logger
from evoinbox.observability.redaction import safe_log_context

router = APIRouter(prefix="/health", tags=["health"])

logger = get_logger(__name__)


@router.get("")
def liveness() -> dict:
    return {"status": "ok"}


@router.get("/db")
def database_readiness() -> JSONResponse:
    try:
        with txn() as cur:
            fetchone(cur, "SELECT 1")
    except (psycopg2.Error, RuntimeError) as e:
        logger.warning(
            "database health check failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return JSONResponse(status_code=200, content={"status": "ok"})
