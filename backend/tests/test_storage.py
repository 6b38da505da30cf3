"""
Tests for storage.py

Uses an in-memory SQLite database; the unique constraint on url_norm is
what separates duplicates from inserts.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from newshub.models.article import Article
from newshub.models.ingestion_run import IngestionRun
from newshub.services.items import NormalizedItem
from newshub.services.storage import (
    ArticleStore,
    CompanyDirectory,
    UpsertStatus,
    is_unique_violation,
)
from tests.fixtures.ingestion_fixtures import make_session_factory, seed_companies


def _item(url="https://reuters.com/a", url_norm="https://reuters.com/a", **kw) -> NormalizedItem:
    data = dict(
        title="Acme beats estimates",
        url=url,
        url_norm=url_norm,
        source_domain="reuters.com",
        published_at="2024-01-15T10:30:00+00:00",
        company_slug="acme",
        provider="gdelt",
        raw_payload={"k": 1},
    )
    data.update(kw)
    return NormalizedItem(**data)


class TestArticleStore:
    """Tests for ArticleStore.upsert / record_run / ping."""

    def setup_method(self):
        self.session_factory = make_session_factory()
        self.ids = seed_companies(self.session_factory, {"Acme": ["AcmeCorp"]})
        self.store = ArticleStore(self.session_factory)

    def test_insert_then_duplicate(self):
        """Upserting the same article twice yields inserted, then duplicate."""
        item = _item()
        first = self.store.upsert(item, company_id=self.ids["Acme"], priority=95)
        second = self.store.upsert(item, company_id=self.ids["Acme"], priority=95)

        assert first.status is UpsertStatus.INSERTED
        assert second.status is UpsertStatus.DUPLICATE

        db = self.session_factory()
        try:
            rows = db.execute(select(Article)).scalars().all()
        finally:
            db.close()
        assert len(rows) == 1
        assert rows[0].priority == 95
        assert rows[0].raw_json == {"k": 1}
        assert rows[0].low_confidence is False

    def test_duplicate_across_providers(self):
        """Same url_norm from a different provider and title is still a duplicate."""
        self.store.upsert(_item(), company_id=self.ids["Acme"], priority=70)
        other = _item(url="https://REUTERS.com/a?utm_source=x", title="ACME BEATS", provider="ai-news")
        assert self.store.upsert(other, company_id=self.ids["Acme"], priority=70).status is UpsertStatus.DUPLICATE

    def test_other_integrity_errors_are_failures(self):
        result = self.store.upsert(_item(), company_id=None, priority=70)
        assert result.status is UpsertStatus.FAILED
        assert result.reason

    def test_ping(self):
        self.store.ping()

    def test_record_run(self):
        ts = datetime(2024, 1, 20, tzinfo=timezone.utc)
        ok = self.store.record_run(
            run_id="r1",
            provider="gdelt",
            item_count=3,
            dedupe_rate_pct=25.0,
            scheduled=True,
            ts=ts,
        )
        assert ok is True
        db = self.session_factory()
        try:
            run = db.execute(select(IngestionRun)).scalars().one()
        finally:
            db.close()
        assert (run.provider, run.item_count, run.dedupe_rate, run.scheduled, run.error_kind) == (
            "gdelt", 3, 25.0, True, None
        )

    def test_record_run_failure_returns_false(self):
        broken = MagicMock()
        broken.commit.side_effect = IntegrityError("INSERT", {}, Exception("boom"))
        store = ArticleStore(lambda: broken)
        assert store.record_run(
            run_id="r1", provider="x", item_count=0, dedupe_rate_pct=0.0,
            scheduled=False, ts=datetime.now(timezone.utc),
        ) is False
        broken.rollback.assert_called_once()


class TestCompanyDirectory:
    def test_load_companies(self):
        session_factory = make_session_factory()
        ids = seed_companies(session_factory, {"Samsung": ["Galaxy"], "Best Buy": []})
        companies = CompanyDirectory(session_factory).load_companies()

        assert [c.canonical_name for c in companies] == ["Best Buy", "Samsung"]
        assert companies[1].id == ids["Samsung"]
        assert companies[1].aliases == ("Galaxy",)


class TestIsUniqueViolation:
    def _err(self, orig):
        return IntegrityError("INSERT", {}, orig)

    def test_sqlstate(self):
        orig = Exception("whatever")
        orig.sqlstate = "23505"
        assert is_unique_violation(self._err(orig))

    def test_pgcode(self):
        orig = Exception("whatever")
        orig.pgcode = "23505"
        assert is_unique_violation(self._err(orig))

    def test_message(self):
        assert is_unique_violation(self._err(Exception("UNIQUE constraint failed: articles.url_norm")))
        assert is_unique_violation(self._err(Exception("duplicate key value violates unique constraint")))

    def test_not_null_is_not_unique(self):
        orig = Exception("NOT NULL constraint failed: articles.company_id")
        orig.sqlstate = "23502"
        assert not is_unique_violation(self._err(orig))
