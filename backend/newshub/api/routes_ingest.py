import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import get_db
from ..models.ingestion_run import IngestionRun
from ..schemas.ingestion import IngestionRunOut, IngestRunOut
from ..services.ingestion import (
    IngestionPipeline,
    RunOutcome,
    build_pipeline,
    fatal_summary,
    run_ingestion,
)

router = APIRouter(tags=["ingestion"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)

STATUS_BY_OUTCOME = {
    RunOutcome.SUCCESS: 200,
    RunOutcome.PARTIAL_SUCCESS: 207,
    RunOutcome.FAILED: 500,
}


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    # In dev with no configured key, skip auth for convenience
    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        # In non-dev environments, missing config is treated as misconfiguration
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_pipeline_factory() -> Callable[[], IngestionPipeline]:
    return build_pipeline


def is_scheduled_request(request: Request) -> bool:
    """
    A run is "scheduled" when a cron trigger fired it: an explicit cron
    header, a cron user agent, or ``?scheduled=true``.
    """
    headers = request.headers
    if headers.get("x-cron") == "1" or headers.get("x-vercel-cron") == "1":
        return True
    if "cron" in headers.get("user-agent", "").lower():
        return True
    return request.query_params.get("scheduled", "").lower() in ("1", "true", "yes")


@router.api_route("/ingest-news", methods=["GET", "POST"], response_model=IngestRunOut)
def ingest_news(
    request: Request,
    _: None = Depends(verify_api_key),
    pipeline_factory: Callable[[], IngestionPipeline] = Depends(get_pipeline_factory),
):
    """
    Run one ingestion across all configured sources.

    200 on success, 207 when some sources failed but items were stored,
    500 when nothing was stored and errors occurred.
    """
    scheduled = is_scheduled_request(request)
    logger.info("Ingestion triggered", extra={"step": "trigger", "event": "scheduled" if scheduled else "manual"})

    try:
        summary = run_ingestion(scheduled=scheduled, pipeline=pipeline_factory())
    except Exception as e:
        logger.exception("Ingestion run crashed", extra={"step": "trigger"})
        summary = fatal_summary(e, scheduled=scheduled)

    body = IngestRunOut.from_summary(summary)
    return JSONResponse(
        status_code=STATUS_BY_OUTCOME[summary.outcome],
        content=body.model_dump(mode="json"),
    )


@router.get("/ingestion/runs", response_model=list[IngestionRunOut])
def list_runs(
    limit: int = 50,
    offset: int = 0,
    provider: str | None = None,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    """Recent per-provider run records, newest first."""
    # Hard cap to avoid unbounded scans
    safe_limit = max(1, min(limit, 200))

    query = db.query(IngestionRun)
    if provider:
        query = query.filter(IngestionRun.provider == provider)
    return (
        query.order_by(IngestionRun.ts.desc(), IngestionRun.id.desc())
        .offset(max(0, offset))
        .limit(safe_limit)
        .all()
    )
