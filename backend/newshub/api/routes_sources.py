from datetime import datetime, timedelta, timezone
import logging

from fastapi import APIRouter, Depends, HTTPException

from ..core.config import get_settings
from ..schemas.ingestion import (
    MAX_PREVIEW_COMPANIES,
    MAX_PREVIEW_LIMIT,
    CandidateItemOut,
    SourcePreviewOut,
)
from ..services.caching import ResponseCache
from ..services.errors import classify_error
from ..services.normalizer import parse_published_at
from ..services.sources import SourceRegistry
from .routes_ingest import verify_api_key

router = APIRouter(tags=["sources"])

settings = get_settings()
logger = logging.getLogger(__name__)


def get_source_registry() -> SourceRegistry:
    return SourceRegistry(settings, cache=ResponseCache(url=settings.REDIS_URL))


@router.get("/sources/{provider}/preview", response_model=SourcePreviewOut)
def preview_source(
    provider: str,
    companies: str,
    since: str | None = None,
    limit: int = 20,
    registry: SourceRegistry = Depends(get_source_registry),
    _: None = Depends(verify_api_key),
):
    """
    Fetch candidates from a single source without storing anything.

    - ``companies`` is a comma-separated alias list.
    - ``since`` defaults to the configured lookback window.
    """
    if provider not in registry.names():
        raise HTTPException(status_code=404, detail=f"Unknown source '{provider}'")

    aliases = [c.strip() for c in companies.split(",") if c.strip()][:MAX_PREVIEW_COMPANIES]
    if not aliases:
        raise HTTPException(status_code=400, detail="companies must name at least one company")

    if since:
        since_dt = parse_published_at(since)
        if since_dt is None:
            raise HTTPException(status_code=400, detail="since must be an ISO-8601 date or datetime")
    else:
        since_dt = datetime.now(timezone.utc) - timedelta(days=settings.NEWS_LOOKBACK_DAYS)

    source = registry.build(provider)
    if source is None:
        raise HTTPException(status_code=503, detail=f"Source '{provider}' is not configured")

    try:
        candidates = source.fetch(aliases, since_dt)
    except Exception as e:
        kind = classify_error(e)
        logger.warning(
            "Source preview failed: %s",
            e,
            extra={"provider": provider, "step": "preview", "error_kind": kind.value},
        )
        raise HTTPException(status_code=502, detail=f"Source '{provider}' failed [{kind.value}]: {e}")
    finally:
        source.close()

    safe_limit = max(1, min(limit, MAX_PREVIEW_LIMIT))
    items = [CandidateItemOut.from_candidate(c) for c in candidates[:safe_limit]]
    return SourcePreviewOut(
        provider=provider,
        companies=aliases,
        since=since_dt,
        count=len(items),
        items=items,
    )
