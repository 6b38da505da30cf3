# backend/newshub/schemas/ingestion.py
from datetime import datetime
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict

from ..services.ingestion import RunSummary
from ..services.items import CandidateItem

MAX_PREVIEW_COMPANIES = 10
MAX_PREVIEW_LIMIT = 50


class ProviderErrorOut(BaseModel):
    provider: str
    kind: str
    message: str


class ProviderResultOut(BaseModel):
    provider: str
    item_count: int
    dedupe_rate_pct: float
    submitted: int
    duplicates: int
    errors: List[str]
    error_kind: str | None = None


class IngestRunOut(BaseModel):
    run_id: str
    scheduled: bool
    outcome: Literal["success", "partial_success", "failed"]
    provider_counts: Dict[str, int]
    total_items: int
    avg_dedupe_rate_pct: float
    weighted_dedupe_rate_pct: float
    started_at: datetime
    errors: List[str]
    provider_errors: List[ProviderErrorOut] = []
    results: List[ProviderResultOut] = []

    @classmethod
    def from_summary(cls, summary: RunSummary) -> "IngestRunOut":
        return cls(
            run_id=summary.run_id,
            scheduled=summary.scheduled,
            outcome=summary.outcome.value,
            provider_counts=dict(summary.provider_counts),
            total_items=summary.total_items,
            avg_dedupe_rate_pct=round(summary.avg_dedupe_rate_pct, 2),
            weighted_dedupe_rate_pct=round(summary.weighted_dedupe_rate_pct, 2),
            started_at=summary.started_at,
            errors=list(summary.errors),
            provider_errors=[
                ProviderErrorOut(provider=e.provider, kind=e.kind.value, message=e.message)
                for e in summary.provider_errors
            ],
            results=[
                ProviderResultOut(
                    provider=r.provider,
                    item_count=r.item_count,
                    dedupe_rate_pct=round(r.dedupe_rate_pct, 2),
                    submitted=r.submitted,
                    duplicates=r.duplicates,
                    errors=list(r.errors),
                    error_kind=r.error_kind.value if r.error_kind else None,
                )
                for r in summary.results
            ],
        )


class IngestionRunOut(BaseModel):
    id: int
    run_id: str
    provider: str
    item_count: int
    dedupe_rate: float
    scheduled: bool
    error_kind: str | None = None
    ts: datetime

    model_config = ConfigDict(from_attributes=True)


class CandidateItemOut(BaseModel):
    title: str | None = None
    url: str | None = None
    source_domain: str | None = None
    published_at: str | None = None
    company_mention: str | None = None
    low_confidence: bool = False
    raw_payload: Dict[str, Any] = {}

    @classmethod
    def from_candidate(cls, candidate: CandidateItem) -> "CandidateItemOut":
        return cls(**candidate.to_dict())


class SourcePreviewOut(BaseModel):
    provider: str
    companies: List[str]
    since: datetime
    count: int
    items: List[CandidateItemOut]
