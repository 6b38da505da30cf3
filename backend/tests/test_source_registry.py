"""
Tests for the source registry (services/sources/__init__.py).
"""
from newshub.core.config import Settings
from newshub.services import sources as sources_module
from newshub.services.sources import (
    AINewsSource,
    EdgarFilingsSource,
    GDELTSource,
    PerplexitySource,
    SourceRegistry,
    build_sources,
)


class TestSourceRegistry:
    """Tests for building adapters from NEWS_PROVIDERS."""

    def test_default_providers_without_llm_key(self, monkeypatch):
        monkeypatch.setattr(sources_module, "llm_configured", lambda: False)
        built = build_sources(Settings(NEWS_PROVIDERS="ai-news,gdelt"))
        assert [type(s) for s in built] == [GDELTSource]

    def test_all_providers_configured(self, monkeypatch):
        monkeypatch.setattr(sources_module, "llm_configured", lambda: True)
        settings = Settings(
            NEWS_PROVIDERS=" ai-news , GDELT,sec_edgar,perplexity,ai-news",
            PPLX_API_KEY="pplx",
            AI_MAX_REQUESTS_PER_RUN=3,
            NEWS_MAX_LINKS_PER_PROVIDER_PER_RUN=9,
        )
        built = build_sources(settings)

        assert [s.name for s in built] == ["ai-news", "gdelt", "sec_edgar", "perplexity"]
        assert isinstance(built[0], AINewsSource) and built[0].max_requests_per_run == 3
        assert isinstance(built[1], GDELTSource) and built[1].max_links_per_run == 9
        assert isinstance(built[2], EdgarFilingsSource)
        assert isinstance(built[3], PerplexitySource)

    def test_perplexity_without_key_is_skipped(self, caplog):
        built = build_sources(Settings(NEWS_PROVIDERS="perplexity", PPLX_API_KEY=None))
        assert built == []
        assert "not configured" in caplog.text

    def test_unknown_provider_is_skipped(self):
        registry = SourceRegistry(Settings(NEWS_PROVIDERS="bogus,gdelt"))
        assert registry.build("bogus") is None
        assert [s.name for s in registry.build_enabled()] == ["gdelt"]

    def test_gdelt_receives_cache(self):
        cache = object()
        (gdelt,) = build_sources(Settings(NEWS_PROVIDERS="gdelt"), cache=cache)
        assert gdelt.cache is cache
