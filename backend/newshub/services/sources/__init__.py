from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .base import BaseSource, batch_aliases
from .edgar import EdgarFilingsSource
from .gdelt import GDELTSource
from .llm_search import AINewsSource, LLMSearchSource
from .perplexity import PerplexitySource
from ..caching import ResponseCache
from ..llm import llm_configured
from ...core.config import Settings, get_settings

logger = logging.getLogger(__name__)

__all__ = [
    "AINewsSource",
    "BaseSource",
    "EdgarFilingsSource",
    "GDELTSource",
    "LLMSearchSource",
    "PerplexitySource",
    "SourceRegistry",
    "batch_aliases",
    "build_sources",
]


def enabled_provider_names(settings: Settings) -> List[str]:
    names: List[str] = []
    for raw in (settings.NEWS_PROVIDERS or "").split(","):
        name = raw.strip().lower()
        if name and name not in names:
            names.append(name)
    return names


class SourceRegistry:
    """
    Registry of source adapter factories, keyed by provider name.

    - Adapters are built from settings, each with its own HTTP client and
      (for GDELT) the cache instance handed in by the caller.
    - A provider listed in NEWS_PROVIDERS but missing credentials is skipped
      with a warning instead of failing the run.
    """

    def __init__(self, settings: Optional[Settings] = None, cache: Optional[ResponseCache] = None) -> None:
        self.settings = settings or get_settings()
        self.cache = cache
        self._factories: Dict[str, Callable[[], Optional[BaseSource]]] = {
            "ai-news": self._build_ai_news,
            "gdelt": self._build_gdelt,
            "sec_edgar": self._build_edgar,
            # legacy, only when explicitly configured:
            "perplexity": self._build_perplexity,
        }

    def _http_kwargs(self) -> dict:
        return {
            "timeout": self.settings.HTTP_TIMEOUT_SECONDS,
            "max_attempts": self.settings.HTTP_MAX_ATTEMPTS,
        }

    def _build_ai_news(self) -> Optional[BaseSource]:
        if not llm_configured():
            return None
        return AINewsSource(
            max_requests_per_run=self.settings.AI_MAX_REQUESTS_PER_RUN,
            placeholder_domains=self.settings.PLACEHOLDER_DOMAINS,
            **self._http_kwargs(),
        )

    def _build_gdelt(self) -> Optional[BaseSource]:
        return GDELTSource(
            cache=self.cache,
            base_url=self.settings.GDELT_BASE_URL,
            max_links_per_run=self.settings.NEWS_MAX_LINKS_PER_PROVIDER_PER_RUN,
            max_records=self.settings.GDELT_MAX_RECORDS,
            cache_ttl_seconds=self.settings.GDELT_CACHE_TTL_SECONDS,
            user_agent=self.settings.EDGAR_USER_AGENT,
            placeholder_domains=self.settings.PLACEHOLDER_DOMAINS,
            **self._http_kwargs(),
        )

    def _build_edgar(self) -> Optional[BaseSource]:
        return EdgarFilingsSource(
            user_agent=self.settings.EDGAR_USER_AGENT,
            max_filings_per_company=self.settings.EDGAR_MAX_FILINGS_PER_COMPANY,
            form_types=self.settings.EDGAR_FORM_TYPES.split(","),
            **self._http_kwargs(),
        )

    def _build_perplexity(self) -> Optional[BaseSource]:
        if not self.settings.PPLX_API_KEY:
            return None
        return PerplexitySource(
            self.settings.PPLX_API_KEY,
            model=self.settings.PPLX_MODEL,
            max_requests_per_run=self.settings.PPLX_MAX_REQUESTS_PER_RUN,
            placeholder_domains=self.settings.PLACEHOLDER_DOMAINS,
            **self._http_kwargs(),
        )

    def names(self) -> List[str]:
        return list(self._factories)

    def build(self, name: str) -> Optional[BaseSource]:
        factory = self._factories.get(name)
        if factory is None:
            logger.warning("No source registered for '%s'; skipping", name, extra={"provider": name})
            return None
        source = factory()
        if source is None:
            logger.warning(
                "Source '%s' is enabled but not configured (missing credentials); skipping",
                name,
                extra={"provider": name},
            )
        return source

    def build_enabled(self) -> List[BaseSource]:
        sources: List[BaseSource] = []
        for name in enabled_provider_names(self.settings):
            source = self.build(name)
            if source is not None:
                sources.append(source)
        return sources


def build_sources(settings: Optional[Settings] = None, cache: Optional[ResponseCache] = None) -> List[BaseSource]:
    return SourceRegistry(settings, cache).build_enabled()
