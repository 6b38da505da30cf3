from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..models.article import Article
from ..models.company import Company
from ..models.ingestion_run import IngestionRun
from .items import CompanyRecord, NormalizedItem
from .normalizer import parse_published_at

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_SQLSTATE = "23505"

SessionFactory = Callable[[], Session]


class UpsertStatus(str, enum.Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class UpsertResult:
    status: UpsertStatus
    reason: Optional[str] = None


def is_unique_violation(exc: IntegrityError) -> bool:
    """
    True when the IntegrityError is a unique-constraint conflict.

    Postgres drivers expose SQLSTATE 23505; other backends only describe it
    in the message.
    """
    orig = getattr(exc, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        if getattr(orig, attr, None) == UNIQUE_VIOLATION_SQLSTATE:
            return True
    msg = str(orig if orig is not None else exc).lower()
    return "unique" in msg or "duplicate" in msg


class CompanyDirectory:
    """Read-only view of the tracked companies."""

    def __init__(self, session_factory: SessionFactory = SessionLocal) -> None:
        self._session_factory = session_factory

    def load_companies(self) -> List[CompanyRecord]:
        db = self._session_factory()
        try:
            rows = db.execute(select(Company).order_by(Company.canonical_name)).scalars().all()
            return [
                CompanyRecord(
                    id=str(c.id),
                    canonical_name=c.canonical_name,
                    aliases=tuple(a for a in (c.aliases or []) if isinstance(a, str)),
                )
                for c in rows
            ]
        finally:
            db.close()


class ArticleStore:
    """
    Article persistence keyed by ``url_norm``.

    Each upsert runs in its own transaction so one bad row never poisons the
    rest of the batch. The unique constraint on ``url_norm`` is the only
    guard against concurrent runs inserting the same article.
    """

    def __init__(self, session_factory: SessionFactory = SessionLocal) -> None:
        self._session_factory = session_factory

    def ping(self) -> None:
        db = self._session_factory()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

    def upsert(self, item: NormalizedItem, *, company_id: str, priority: int) -> UpsertResult:
        published = parse_published_at(item.published_at)
        db = self._session_factory()
        try:
            db.add(
                Article(
                    company_id=company_id,
                    title=item.title,
                    url=item.url,
                    url_norm=item.url_norm,
                    source_domain=item.source_domain,
                    published_at=published,
                    priority=priority,
                    provider=item.provider,
                    raw_json=item.raw_payload or {},
                    low_confidence=item.low_confidence,
                )
            )
            db.commit()
            return UpsertResult(UpsertStatus.INSERTED)
        except IntegrityError as e:
            db.rollback()
            if is_unique_violation(e):
                return UpsertResult(UpsertStatus.DUPLICATE)
            return UpsertResult(UpsertStatus.FAILED, reason=str(e.orig or e)[:500])
        except SQLAlchemyError as e:
            db.rollback()
            return UpsertResult(UpsertStatus.FAILED, reason=str(e)[:500])
        finally:
            db.close()

    def record_run(
        self,
        *,
        run_id: str,
        provider: str,
        item_count: int,
        dedupe_rate_pct: float,
        scheduled: bool,
        ts: datetime,
        error_kind: Optional[str] = None,
    ) -> bool:
        """Write one run record; returns False (and logs) instead of raising."""
        db = self._session_factory()
        try:
            db.add(
                IngestionRun(
                    run_id=run_id,
                    provider=provider,
                    item_count=item_count,
                    dedupe_rate=dedupe_rate_pct,
                    scheduled=scheduled,
                    error_kind=error_kind,
                    ts=ts,
                )
            )
            db.commit()
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to record ingestion run",
                extra={"run_id": run_id, "provider": provider, "step": "record_run"},
            )
            return False
        finally:
            db.close()

