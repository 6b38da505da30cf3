# backend/newshub/services/sources/gdelt.py
from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from .base import BaseSource
from ..caching import ResponseCache, query_hash
from ..items import CandidateItem
from ..normalizer import (
    DEFAULT_PLACEHOLDER_DOMAINS,
    clean_title,
    extract_domain,
    is_placeholder_url,
    is_valid_url,
    parse_published_at,
)

logger = logging.getLogger(__name__)

GDELT_THEMES = ("GENERAL_BUSINESS", "ECON_STOCKMARKET", "SCI_TECHNOLOGY")


def format_gdelt_datetime(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S")


def _hour_floor(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


class GDELTSource(BaseSource):
    """
    GDELT DOC 2.0 ``artlist`` search, one company alias per request.

    - Query window is ``[since, now]`` with both ends floored to the hour, so
      repeated runs inside the same hour share cache entries.
    - Responses are cached under ``articles:gdelt:<sha256(alias|start|end)>``.
    - At most ``max_links_per_run`` items per run, split evenly across aliases
      (at least one per alias before the overall cap is applied).
    """

    name = "gdelt"

    def __init__(
        self,
        *,
        cache: Optional[ResponseCache] = None,
        base_url: str = "https://api.gdeltproject.org/api/v2",
        max_links_per_run: int = 25,
        max_records: int = 50,
        cache_ttl_seconds: int = 3600,
        user_agent: str = "NewsHub/1.0",
        placeholder_domains: Iterable[str] = DEFAULT_PLACEHOLDER_DOMAINS,
        now: Optional[Callable[[], datetime]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.max_links_per_run = max(1, max_links_per_run)
        self.max_records = max_records
        self.cache_ttl_seconds = cache_ttl_seconds
        self.user_agent = user_agent
        self.placeholder_domains = tuple(placeholder_domains)
        self._now = now or (lambda: datetime.now(timezone.utc))

    def fetch(self, company_aliases: List[str], since: datetime) -> List[CandidateItem]:
        aliases = [a for a in company_aliases if a and a.strip()]
        if not aliases:
            return []

        per_alias = max(1, self.max_links_per_run // len(aliases))
        start = _hour_floor(since)
        end = _hour_floor(self._now())

        items = self._run_batches(
            aliases,
            lambda alias: self._fetch_for_company(alias, start, end)[:per_alias],
        )
        return items[: self.max_links_per_run]

    def _build_params(self, alias: str, start: datetime, end: datetime) -> Dict[str, Any]:
        themes = " OR ".join(f"theme:{t}" for t in GDELT_THEMES)
        return {
            "query": f'"{alias}" ({themes})',
            "mode": "artlist",
            "format": "json",
            "sort": "DateDesc",
            "maxrecords": str(self.max_records),
            "startdatetime": format_gdelt_datetime(start),
            "enddatetime": format_gdelt_datetime(end),
        }

    def _fetch_for_company(self, alias: str, start: datetime, end: datetime) -> List[CandidateItem]:
        qhash = query_hash(alias, format_gdelt_datetime(start), format_gdelt_datetime(end))

        if self.cache is not None:
            cached = self.cache.get_articles(self.name, qhash)
            if cached is not None:
                logger.info(
                    "GDELT cache hit for '%s'",
                    alias,
                    extra={"provider": self.name, "step": "cache_hit"},
                )
                return [CandidateItem.from_dict(d) for d in cached if isinstance(d, dict)]

        resp = self._request(
            "GET",
            f"{self.base_url}/doc/doc",
            params=self._build_params(alias, start, end),
            headers={"User-Agent": self.user_agent},
        )
        if not resp.content.strip():
            data: Dict[str, Any] = {}
        else:
            try:
                data = resp.json()
            except ValueError as e:
                # GDELT answers some bad queries with a plain-text/HTML page.
                raise ValueError(f"GDELT returned a non-JSON payload for '{alias}'") from e

        articles = data.get("articles") if isinstance(data, dict) else None
        if not isinstance(articles, list):
            articles = []

        candidates = [
            self._transform(a, alias)
            for a in articles
            if isinstance(a, dict) and self._is_usable(a)
        ]

        if self.cache is not None:
            self.cache.set_articles(
                self.name,
                qhash,
                [c.to_dict() for c in candidates],
                ttl=self.cache_ttl_seconds,
            )
        return candidates

    def _is_usable(self, article: Dict[str, Any]) -> bool:
        url = article.get("url")
        return bool(
            article.get("title")
            and url
            and article.get("domain")
            and article.get("seendate")
            and is_valid_url(url)
            and not is_placeholder_url(url, self.placeholder_domains)
        )

    def _transform(self, article: Dict[str, Any], alias: str) -> CandidateItem:
        url = str(article["url"]).strip()
        seen = parse_published_at(article.get("seendate"))
        return CandidateItem(
            title=clean_title(str(article["title"])),
            url=url,
            source_domain=extract_domain(url),
            published_at=seen.isoformat() if seen else None,
            company_mention=alias.lower(),
            raw_payload={"gdelt_article": article, "search_company": alias},
        )
