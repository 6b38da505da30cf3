"""
Tests for ingestion.py

Drives IngestionPipeline against an in-memory database with scripted
sources: adapter isolation, per-item error handling, dedupe accounting,
run records and the fatal pre-checks.
"""
from datetime import timedelta
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from newshub.core.config import Settings
from newshub.models.ingestion_run import IngestionRun
from newshub.models.telemetry_event import TelemetryEvent
from newshub.services import ingestion as ingestion_module
from newshub.services.company_resolver import CompanyResolver
from newshub.services.errors import ErrorKind
from newshub.services.ingestion import (
    IngestionPipeline,
    RunOutcome,
    RunState,
    build_alias_list,
    run_ingestion,
    run_scheduled_ingestion,
)
from newshub.services.items import CompanyRecord, company_slug
from newshub.services.normalizer import normalize
from newshub.services.storage import ArticleStore, CompanyDirectory, UpsertResult, UpsertStatus
from newshub.services.telemetry import TelemetrySink
from tests.fixtures.ingestion_fixtures import (
    FIXED_NOW,
    RecordingTelemetry,
    StaticSource,
    make_candidate,
    make_session_factory,
    seed_companies,
)

SETTINGS = Settings(COMPANY_ALIASES={}, NEWS_LOOKBACK_DAYS=7)


def _url(n: int) -> str:
    return f"https://reuters.com/tech/acme-story-{n}"


class PipelineTestBase:
    def setup_method(self):
        self.session_factory = make_session_factory()
        self.ids = seed_companies(self.session_factory, {"Acme": ["AcmeCorp"]})
        self.store = ArticleStore(self.session_factory)
        self.directory = CompanyDirectory(self.session_factory)
        self.telemetry = RecordingTelemetry()

    def pipeline(self, sources, **kw) -> IngestionPipeline:
        kw.setdefault("store", self.store)
        kw.setdefault("directory", self.directory)
        kw.setdefault("telemetry", self.telemetry)
        return IngestionPipeline(sources, settings=SETTINGS, now=lambda: FIXED_NOW, **kw)

    def preload(self, url: str) -> None:
        item = normalize(make_candidate(url=url), provider="seed", company_slug="acme")
        assert self.store.upsert(item, company_id=self.ids["Acme"], priority=70).status is UpsertStatus.INSERTED

    def run_rows(self):
        db = self.session_factory()
        try:
            return db.execute(select(IngestionRun).order_by(IngestionRun.id)).scalars().all()
        finally:
            db.close()


class TestEndToEnd(PipelineTestBase):
    """Two adapters: A returns a duplicate, an unknown company and a new item; B raises."""

    def setup_method(self):
        super().setup_method()
        self.preload(_url(1))
        self.source_a = StaticSource(
            "A",
            items=[
                make_candidate(url=_url(1) + "?utm_source=newsletter"),
                make_candidate(url=_url(2), company_mention="Globex"),
                make_candidate(url=_url(3), company_mention="AcmeCorp"),
            ],
        )
        self.source_b = StaticSource("B", error=httpx.ConnectError("All connection attempts failed"))
        self.pipe = self.pipeline([self.source_a, self.source_b])
        self.summary = self.pipe.run()

    def test_summary_counts(self):
        assert self.summary.provider_counts == {"A": 1}
        assert self.summary.total_items == 1

    def test_b_error_classified_network(self):
        assert len(self.summary.errors) == 1
        assert self.summary.errors[0].startswith("Provider B failed [network]:")
        (error,) = self.summary.provider_errors
        assert (error.provider, error.kind) == ("B", ErrorKind.NETWORK)

    def test_a_dedupe_rate(self):
        result_a = self.summary.results[0]
        assert result_a.submitted == 3
        assert result_a.duplicates == 1
        assert result_a.dedupe_rate_pct == pytest.approx(33.333, rel=1e-3)
        assert result_a.errors == ["Unknown company: Globex"]
        assert [i.url for i in result_a.items] == [_url(3)]

    def test_failed_adapter_result(self):
        result_b = self.summary.results[1]
        assert result_b.item_count == 0
        assert result_b.errors
        assert result_b.error_kind is ErrorKind.NETWORK

    def test_outcome_partial_success(self):
        assert self.summary.outcome is RunOutcome.PARTIAL_SUCCESS
        assert self.pipe.state is RunState.DONE

    def test_avg_only_over_successful_adapters(self):
        assert self.summary.avg_dedupe_rate_pct == pytest.approx(33.333, rel=1e-3)

    def test_run_records_per_adapter(self):
        rows = self.run_rows()
        assert [(r.provider, r.item_count, r.error_kind) for r in rows] == [
            ("A", 1, None),
            ("B", 0, "network"),
        ]
        assert rows[0].dedupe_rate == pytest.approx(33.333, rel=1e-3)
        assert {r.run_id for r in rows} == {self.summary.run_id}
        assert all(r.scheduled is False for r in rows)

    def test_telemetry_events(self):
        assert self.telemetry.names() == ["ingest_run", "provider_error"]
        provider_error = dict(self.telemetry.events)["provider_error"]
        assert provider_error["provider"] == "B"
        assert provider_error["error_kind"] == "network"

    def test_sources_receive_aliases_and_since(self):
        call = self.source_a.calls[0]
        assert call["aliases"] == ["Acme", "AcmeCorp"]
        assert call["since"] == FIXED_NOW - timedelta(days=7)


class TestItemHandling(PipelineTestBase):
    """Per-item validation, store failures and unexpected errors."""

    def test_invalid_items_dropped_with_reason(self):
        source = StaticSource(
            "A",
            items=[
                make_candidate(url="https://example.com/fake"),
                make_candidate(title="ab"),
                make_candidate(url=_url(5)),
            ],
        )
        summary = self.pipeline([source]).run()
        result = summary.results[0]

        assert result.item_count == 1
        assert result.errors == ["Invalid article: placeholder_url", "Invalid article: invalid_title"]
        skipped = [p for e, p in self.telemetry.events if e == "article_skipped_invalid_url"]
        assert [p["reason"] for p in skipped] == ["placeholder_url", "invalid_title"]
        # item-level errors are not run-level errors
        assert summary.errors == []
        assert summary.outcome is RunOutcome.SUCCESS

    def test_priority_and_slug_passed_to_store(self):
        store = MagicMock(wraps=self.store)
        source = StaticSource("A", items=[make_candidate(url=_url(6), source_domain="www.TechCrunch.com")])
        self.pipeline([source], store=store).run()

        args, kwargs = store.upsert.call_args
        assert kwargs["priority"] == 95
        assert kwargs["company_id"] == self.ids["Acme"]
        assert args[0].company_slug == "acme"
        assert args[0].provider == "A"

    def test_store_failure_is_item_error(self):
        store = MagicMock()
        store.upsert.return_value = UpsertResult(UpsertStatus.FAILED, reason="disk full")
        source = StaticSource("A", items=[make_candidate(url=_url(7))])

        summary = self.pipeline([source], store=store).run()
        assert summary.results[0].errors == ["Store write failed: disk full"]
        assert summary.results[0].item_count == 0

    def test_unexpected_item_exception_does_not_stop_adapter(self):
        store = MagicMock()
        store.upsert.side_effect = [RuntimeError("boom"), UpsertResult(UpsertStatus.INSERTED)]
        source = StaticSource("A", items=[make_candidate(url=_url(8)), make_candidate(url=_url(9))])

        summary = self.pipeline([source], store=store).run()
        result = summary.results[0]
        assert result.item_count == 1
        assert result.errors == ["Unexpected error: RuntimeError: boom"]

    def test_low_confidence_flag_persisted(self):
        source = StaticSource("A", items=[make_candidate(url=_url(10), low_confidence=True)])
        summary = self.pipeline([source]).run()
        assert summary.results[0].items[0].low_confidence is True


class TestAdapterIsolation(PipelineTestBase):
    """A throwing adapter never prevents the others from running."""

    def test_first_adapter_failing(self):
        failing = StaticSource("gdelt", error=TimeoutError("read timed out"))
        working = StaticSource("ai-news", items=[make_candidate(url=_url(11))])

        summary = self.pipeline([failing, working]).run()
        assert summary.provider_counts == {"ai-news": 1}
        assert summary.provider_errors[0].kind is ErrorKind.TIMEOUT
        assert working.calls

    def test_all_adapters_failing_is_failed(self):
        summary = self.pipeline(
            [
                StaticSource("a", error=RuntimeError("429 Too Many Requests")),
                StaticSource("b", error=RuntimeError("insufficient_quota")),
            ]
        ).run()
        assert summary.outcome is RunOutcome.FAILED
        assert summary.provider_counts == {}
        assert [e.kind for e in summary.provider_errors] == [ErrorKind.RATE_LIMIT, ErrorKind.API_CREDITS]
        assert summary.avg_dedupe_rate_pct == 0.0

    def test_unweighted_mean_differs_from_weighted(self):
        self.preload(_url(20))
        a = StaticSource("a", items=[make_candidate(url=_url(20)), make_candidate(url=_url(21))])
        b = StaticSource("b", items=[make_candidate(url=_url(n)) for n in range(22, 26)])

        summary = self.pipeline([a, b]).run()
        # a: 1/2 = 50%, b: 0/4 = 0%
        assert summary.avg_dedupe_rate_pct == pytest.approx(25.0)
        assert summary.weighted_dedupe_rate_pct == pytest.approx(100 / 6)
        assert summary.outcome is RunOutcome.SUCCESS

    def test_same_article_from_two_adapters_stored_once(self):
        a = StaticSource("a", items=[make_candidate(url=_url(30))])
        b = StaticSource("b", items=[make_candidate(url=_url(30) + "?fbclid=x", title="ACME UNVEILS")])

        summary = self.pipeline([a, b]).run()
        assert summary.provider_counts == {"a": 1, "b": 0}
        assert summary.results[1].duplicates == 1


class TestFatalRuns(PipelineTestBase):
    """Missing sources or stores abort the run before any fetch."""

    def test_no_sources(self):
        summary = self.pipeline([]).run()
        assert summary.fatal is True
        assert summary.provider_counts == {}
        assert len(summary.errors) == 1
        assert summary.outcome is RunOutcome.FAILED
        assert self.run_rows() == []

    def test_no_store(self):
        source = StaticSource("a", items=[make_candidate()])
        summary = IngestionPipeline([source], None, self.directory, settings=SETTINGS).run()
        assert summary.fatal is True
        assert source.calls == []

    def test_store_unreachable_is_database_error(self):
        store = MagicMock()
        store.ping.side_effect = OperationalError("SELECT 1", {}, Exception("could not connect to server"))
        source = StaticSource("a", items=[make_candidate()])

        summary = self.pipeline([source], store=store).run()
        assert summary.fatal is True
        assert summary.provider_errors[0].kind is ErrorKind.DATABASE
        assert source.calls == []

    def test_directory_failure(self):
        directory = MagicMock()
        directory.load_companies.side_effect = RuntimeError("relation companies does not exist")
        summary = self.pipeline([StaticSource("a")], directory=directory).run()
        assert summary.fatal is True
        assert summary.outcome is RunOutcome.FAILED


class TestTelemetryFailures(PipelineTestBase):
    def test_broken_telemetry_never_fails_run(self):
        def broken_session():
            raise RuntimeError("telemetry db down")

        source = StaticSource("a", items=[make_candidate(url=_url(40))])
        summary = self.pipeline([source], telemetry=TelemetrySink(broken_session)).run()
        assert summary.total_items == 1

    def test_failing_rollback_never_fails_run(self):
        """commit, rollback and close all raising on a failed adapter's provider_error event."""
        session = MagicMock()
        session.commit.side_effect = RuntimeError("server closed the connection")
        session.rollback.side_effect = RuntimeError("connection already closed")
        session.close.side_effect = RuntimeError("connection already closed")

        failing = StaticSource("a", error=httpx.ConnectError("connection refused"))
        working = StaticSource("b", items=[make_candidate(url=_url(41))])
        summary = self.pipeline([failing, working], telemetry=TelemetrySink(lambda: session)).run()

        assert summary.provider_counts == {"b": 1}
        assert summary.provider_errors[0].kind is ErrorKind.NETWORK
        assert session.rollback.called

    def test_real_sink_writes_events(self):
        source = StaticSource("a", error=httpx.ConnectError("connection refused"))
        self.pipeline([source], telemetry=TelemetrySink(self.session_factory)).run(scheduled=True)

        db = self.session_factory()
        try:
            events = db.execute(select(TelemetryEvent)).scalars().all()
        finally:
            db.close()
        assert [e.event for e in events] == ["provider_error"]
        assert events[0].payload["scheduled"] is True


class TestHelpers:
    def test_company_slug(self):
        assert company_slug("Best Buy") == "bestbuy"

    def test_alias_list_merges_configured_and_stored(self):
        companies = [
            CompanyRecord(id="1", canonical_name="Best Buy", aliases=("Geek Squad", "best buy")),
            CompanyRecord(id="2", canonical_name="Qualcomm"),
        ]
        aliases = build_alias_list(companies, {"bestbuy": ["Best Buy", "BBY"]})
        assert aliases == ["Best Buy", "BBY", "Geek Squad", "Qualcomm"]

    def test_alias_list_and_resolver_agree_on_punctuated_names(self):
        """Every configured search term resolves back to its company."""
        companies = [CompanyRecord(id="c1", canonical_name="AT&T")]
        configured = {"att": ["AT&T", "Cricket"]}

        aliases = build_alias_list(companies, configured)
        resolver = CompanyResolver.from_companies(companies, configured)

        assert aliases == ["AT&T", "Cricket"]
        assert [resolver.resolve(a) for a in aliases] == ["c1", "c1"]

    def test_run_ingestion_closes_sources(self):
        source = StaticSource("a")
        source.close = MagicMock()
        pipeline = MagicMock(sources=[source])
        run_ingestion(pipeline=pipeline)
        source.close.assert_called_once()

    def test_scheduled_task_reports_crash(self, monkeypatch):
        def explode(settings=None):
            raise RuntimeError("could not connect to redis")

        monkeypatch.setattr(ingestion_module, "build_pipeline", explode)
        result = run_scheduled_ingestion()

        assert result["outcome"] == "failed"
        assert result["scheduled"] is True
        assert result["provider_counts"] == {}
        assert result["provider_errors"][0]["kind"] == "network"
