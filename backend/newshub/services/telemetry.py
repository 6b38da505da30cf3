from __future__ import annotations

from typing import Any, Callable
import logging

from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..models.telemetry_event import TelemetryEvent

logger = logging.getLogger(__name__)

INGEST_RUN = "ingest_run"
PROVIDER_ERROR = "provider_error"
ARTICLE_SKIPPED_INVALID_URL = "article_skipped_invalid_url"


class TelemetrySink:
    """
    Best-effort, fire-and-forget event writer.
    Failure must NEVER break the ingestion run.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def track(self, event: str, payload: dict[str, Any] | None = None) -> None:
        db = None
        try:
            db = self._session_factory()
            db.add(TelemetryEvent(event=event, payload=payload or {}))
            db.commit()
        except Exception:
            logger.exception("Failed to write telemetry event", extra={"event": event})
            if db is not None:
                try:
                    db.rollback()
                except Exception:
                    logger.exception("Telemetry rollback failed", extra={"event": event})
        finally:
            if db is not None:
                try:
                    db.close()
                except Exception:
                    logger.exception("Failed to close telemetry session", extra={"event": event})
