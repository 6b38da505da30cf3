from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import enum
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from ..core.celery_app import celery_app
from ..core.config import Settings, get_settings
from .caching import ResponseCache
from .company_resolver import CompanyResolver
from .errors import ErrorKind, IngestionError, classify_error
from .items import (
    CandidateItem,
    CompanyRecord,
    NormalizedItem,
    company_slug,
    configured_aliases_for,
)
from .normalizer import normalize, validate
from .priority import PriorityScorer
from .sources import BaseSource, build_sources
from .storage import ArticleStore, CompanyDirectory, UpsertStatus
from .telemetry import (
    ARTICLE_SKIPPED_INVALID_URL,
    INGEST_RUN,
    PROVIDER_ERROR,
    TelemetrySink,
)

logger = logging.getLogger(__name__)

FATAL_PROVIDER = "pipeline"


class RunState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    DONE = "done"


class RunOutcome(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass(frozen=True)
class ProviderError:
    provider: str
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"Provider {self.provider} failed [{self.kind.value}]: {self.message}"


@dataclass
class IngestionResult:
    """
    Outcome of one adapter within one run.

    ``errors`` holds per-item errors for an adapter that fetched, or the
    single adapter-level error for one that did not. ``error_kind`` is only
    set in the latter case.
    """

    provider: str
    item_count: int = 0
    dedupe_rate_pct: float = 0.0
    items: List[NormalizedItem] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    submitted: int = 0
    duplicates: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error_kind is not None


@dataclass(frozen=True)
class RunSummary:
    provider_counts: Dict[str, int]
    total_items: int
    avg_dedupe_rate_pct: float
    started_at: datetime
    errors: List[str]
    run_id: str = ""
    scheduled: bool = False
    results: List[IngestionResult] = field(default_factory=list)
    provider_errors: List[ProviderError] = field(default_factory=list)
    weighted_dedupe_rate_pct: float = 0.0
    fatal: bool = False

    @property
    def outcome(self) -> RunOutcome:
        if self.errors and self.total_items == 0:
            return RunOutcome.FAILED
        if self.errors:
            return RunOutcome.PARTIAL_SUCCESS
        return RunOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scheduled": self.scheduled,
            "outcome": self.outcome.value,
            "provider_counts": dict(self.provider_counts),
            "total_items": self.total_items,
            "avg_dedupe_rate_pct": self.avg_dedupe_rate_pct,
            "weighted_dedupe_rate_pct": self.weighted_dedupe_rate_pct,
            "started_at": self.started_at.isoformat(),
            "errors": list(self.errors),
            "provider_errors": [
                {"provider": e.provider, "kind": e.kind.value, "message": e.message}
                for e in self.provider_errors
            ],
        }


def fatal_summary(
    exc: BaseException,
    *,
    started_at: Optional[datetime] = None,
    run_id: Optional[str] = None,
    scheduled: bool = False,
) -> RunSummary:
    """All-providers-failed summary: empty counts and one classified error."""
    error = ProviderError(FATAL_PROVIDER, classify_error(exc), str(exc) or type(exc).__name__)
    return RunSummary(
        provider_counts={},
        total_items=0,
        avg_dedupe_rate_pct=0.0,
        started_at=started_at or datetime.now(timezone.utc),
        errors=[f"Ingestion run failed [{error.kind.value}]: {error.message}"],
        run_id=run_id or str(uuid4()),
        scheduled=scheduled,
        provider_errors=[error],
        fatal=True,
    )


def build_alias_list(
    companies: Sequence[CompanyRecord],
    configured_aliases: Optional[Dict[str, List[str]]] = None,
) -> List[str]:
    """
    Search terms for the adapters: configured aliases per company (else its
    canonical name) plus stored aliases, de-duplicated case-insensitively in
    first-seen order.
    """
    seen = set()
    out: List[str] = []
    for company in companies:
        names = configured_aliases_for(company.canonical_name, configured_aliases) or [company.canonical_name]
        names.extend(company.aliases)
        for name in names:
            name = (name or "").strip()
            if name and name.lower() not in seen:
                seen.add(name.lower())
                out.append(name)
    return out


class IngestionPipeline:
    """
    Drives one ingestion run across all configured sources.

    Sources run one after another and are isolated from each other: a source
    that raises contributes a zero-item result carrying its classified error
    and the run moves on. Items flow through
    validate -> resolve -> normalize -> score -> upsert; item-level problems
    become per-item errors on that source's result.

    State: IDLE -> FETCHING -> AGGREGATING -> DONE (see ``state``).
    """

    def __init__(
        self,
        sources: Sequence[BaseSource],
        store: Optional[ArticleStore],
        directory: Optional[CompanyDirectory],
        telemetry: Optional[TelemetrySink] = None,
        scorer: Optional[PriorityScorer] = None,
        settings: Optional[Settings] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.sources = list(sources)
        self.store = store
        self.directory = directory
        self.telemetry = telemetry
        self.scorer = scorer or PriorityScorer(default=self.settings.DEFAULT_PRIORITY)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.state = RunState.IDLE

    def _track(self, event: str, payload: Dict[str, Any]) -> None:
        if self.telemetry is not None:
            self.telemetry.track(event, payload)

    def run(self, scheduled: bool = False) -> RunSummary:
        run_id = str(uuid4())
        started_at = self._now()
        self.state = RunState.IDLE
        log_extra = {"run_id": run_id, "step": "run"}

        logger.info(
            "Starting ingestion run (scheduled=%s, sources=%s)",
            scheduled,
            [s.name for s in self.sources],
            extra=log_extra,
        )

        try:
            companies = self._preflight()
        except Exception as e:
            logger.exception("Ingestion run aborted before fetching", extra=log_extra)
            self.state = RunState.DONE
            return fatal_summary(e, started_at=started_at, run_id=run_id, scheduled=scheduled)

        resolver = CompanyResolver.from_companies(companies, self.settings.COMPANY_ALIASES)
        slugs = {c.id: company_slug(c.canonical_name) for c in companies}
        aliases = build_alias_list(companies, self.settings.COMPANY_ALIASES)
        since = started_at - timedelta(days=self.settings.NEWS_LOOKBACK_DAYS)
        if not aliases:
            logger.warning("No tracked companies; sources will have nothing to search", extra=log_extra)

        self.state = RunState.FETCHING
        results: List[IngestionResult] = []
        for source in self.sources:
            results.append(
                self._run_source(source, aliases, since, resolver, slugs, run_id=run_id, scheduled=scheduled)
            )

        self.state = RunState.AGGREGATING
        summary = self._aggregate(results, started_at=started_at, run_id=run_id, scheduled=scheduled)
        self._record_runs(results, run_id=run_id, scheduled=scheduled, ts=started_at)

        self.state = RunState.DONE
        logger.info(
            "Ingestion run finished: outcome=%s total_items=%d errors=%d",
            summary.outcome.value,
            summary.total_items,
            len(summary.errors),
            extra=log_extra,
        )
        return summary

    def _preflight(self) -> List[CompanyRecord]:
        if not self.sources:
            raise IngestionError("No news sources configured")
        if self.store is None:
            raise IngestionError("No article store configured")
        if self.directory is None:
            raise IngestionError("No company directory configured")
        self.store.ping()
        return self.directory.load_companies()

    # ------------------------------------------------------------------
    # Per-source
    # ------------------------------------------------------------------

    def _run_source(
        self,
        source: BaseSource,
        aliases: List[str],
        since: datetime,
        resolver: CompanyResolver,
        slugs: Dict[str, str],
        *,
        run_id: str,
        scheduled: bool,
    ) -> IngestionResult:
        provider = source.name
        log_extra = {"run_id": run_id, "provider": provider}
        t0 = time.perf_counter()

        try:
            candidates = source.fetch(aliases, since)
        except Exception as e:
            kind = classify_error(e)
            error = ProviderError(provider, kind, str(e) or type(e).__name__)
            logger.warning(
                "Source fetch failed: %s",
                error,
                exc_info=True,
                extra={**log_extra, "step": "fetch", "error_kind": kind.value},
            )
            self._track(
                PROVIDER_ERROR,
                {
                    "run_id": run_id,
                    "provider": provider,
                    "error_kind": kind.value,
                    "message": error.message[:500],
                    "scheduled": scheduled,
                },
            )
            return IngestionResult(
                provider=provider,
                errors=[str(error)],
                error_kind=kind,
                error_message=error.message,
            )

        result = IngestionResult(provider=provider, submitted=len(candidates))
        for candidate in candidates:
            try:
                self._process_item(candidate, result, resolver, slugs, run_id=run_id)
            except Exception as e:
                logger.exception("Unexpected error processing item", extra={**log_extra, "step": "process_item"})
                result.errors.append(f"Unexpected error: {type(e).__name__}: {e}")

        result.item_count = len(result.items)
        if result.submitted:
            result.dedupe_rate_pct = result.duplicates / result.submitted * 100

        duration_ms = int((time.perf_counter() - t0) * 1000)
        logger.info(
            "Source finished: submitted=%d stored=%d duplicates=%d item_errors=%d (%dms)",
            result.submitted,
            result.item_count,
            result.duplicates,
            len(result.errors),
            duration_ms,
            extra={**log_extra, "step": "source_done"},
        )
        self._track(
            INGEST_RUN,
            {
                "run_id": run_id,
                "provider": provider,
                "item_count": result.item_count,
                "submitted": result.submitted,
                "duplicates": result.duplicates,
                "dedupe_rate": result.dedupe_rate_pct,
                "item_errors": len(result.errors),
                "duration_ms": duration_ms,
                "scheduled": scheduled,
            },
        )
        return result

    def _process_item(
        self,
        candidate: CandidateItem,
        result: IngestionResult,
        resolver: CompanyResolver,
        slugs: Dict[str, str],
        *,
        run_id: str,
    ) -> None:
        provider = result.provider

        reason = validate(candidate, self.settings.PLACEHOLDER_DOMAINS)
        if reason is not None:
            logger.info(
                "Skipping invalid item: %s",
                reason.value,
                extra={"run_id": run_id, "provider": provider, "step": "validate", "reason": reason.value},
            )
            self._track(
                ARTICLE_SKIPPED_INVALID_URL,
                {
                    "run_id": run_id,
                    "provider": provider,
                    "reason": reason.value,
                    "url": candidate.url if isinstance(candidate.url, str) else None,
                },
            )
            result.errors.append(f"Invalid article: {reason.value}")
            return

        company_id = resolver.resolve(candidate.company_mention)
        if company_id is None:
            logger.info(
                "Unknown company mention '%s'",
                candidate.company_mention,
                extra={"run_id": run_id, "provider": provider, "step": "resolve"},
            )
            result.errors.append(f"Unknown company: {candidate.company_mention}")
            return

        item = normalize(candidate, provider=provider, company_slug=slugs.get(company_id, company_id))
        priority = self.scorer.score(item.source_domain)

        outcome = self.store.upsert(item, company_id=company_id, priority=priority)
        if outcome.status is UpsertStatus.INSERTED:
            result.items.append(item)
        elif outcome.status is UpsertStatus.DUPLICATE:
            result.duplicates += 1
        else:
            logger.warning(
                "Article upsert failed: %s",
                outcome.reason,
                extra={"run_id": run_id, "provider": provider, "step": "upsert"},
            )
            result.errors.append(f"Store write failed: {outcome.reason}")

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _aggregate(
        self,
        results: List[IngestionResult],
        *,
        started_at: datetime,
        run_id: str,
        scheduled: bool,
    ) -> RunSummary:
        ok = [r for r in results if not r.failed]
        provider_errors = [
            ProviderError(r.provider, r.error_kind, r.error_message or "") for r in results if r.failed
        ]

        # Unweighted mean over adapters, kept for compatibility with existing
        # dashboards; the item-weighted rate is reported next to it.
        avg = sum(r.dedupe_rate_pct for r in ok) / len(ok) if ok else 0.0
        submitted = sum(r.submitted for r in ok)
        weighted = sum(r.duplicates for r in ok) / submitted * 100 if submitted else 0.0

        return RunSummary(
            provider_counts={r.provider: r.item_count for r in ok},
            total_items=sum(r.item_count for r in ok),
            avg_dedupe_rate_pct=avg,
            started_at=started_at,
            errors=[str(e) for e in provider_errors],
            run_id=run_id,
            scheduled=scheduled,
            results=results,
            provider_errors=provider_errors,
            weighted_dedupe_rate_pct=weighted,
        )

    def _record_runs(self, results: List[IngestionResult], *, run_id: str, scheduled: bool, ts: datetime) -> None:
        for r in results:
            self.store.record_run(
                run_id=run_id,
                provider=r.provider,
                item_count=r.item_count,
                dedupe_rate_pct=r.dedupe_rate_pct,
                scheduled=scheduled,
                ts=ts,
                error_kind=r.error_kind.value if r.error_kind else None,
            )


def build_pipeline(settings: Optional[Settings] = None) -> IngestionPipeline:
    settings = settings or get_settings()
    cache = ResponseCache(url=settings.REDIS_URL)
    return IngestionPipeline(
        sources=build_sources(settings, cache),
        store=ArticleStore(),
        directory=CompanyDirectory(),
        telemetry=TelemetrySink(),
        scorer=PriorityScorer(default=settings.DEFAULT_PRIORITY),
        settings=settings,
    )


def run_ingestion(scheduled: bool = False, pipeline: Optional[IngestionPipeline] = None) -> RunSummary:
    """
    Run one ingestion with the default wiring (or ``pipeline`` if given).

    Exceptions that escape the pipeline are left to the caller, which turns
    them into an all-providers-failed summary via ``fatal_summary``.
    """
    pipeline = pipeline or build_pipeline()
    try:
        return pipeline.run(scheduled=scheduled)
    finally:
        for source in pipeline.sources:
            source.close()


@celery_app.task(name="newshub.services.ingestion.run_scheduled_ingestion")
def run_scheduled_ingestion() -> Dict[str, Any]:
    """
    Periodic task fired by celery beat: one scheduled ingestion run.
    Returns the run summary as a JSON-serializable dict.
    """
    try:
        summary = run_ingestion(scheduled=True)
    except Exception as e:
        logger.exception("Scheduled ingestion crashed", extra={"step": "scheduled_run"})
        summary = fatal_summary(e, scheduled=True)
    return summary.to_dict()
