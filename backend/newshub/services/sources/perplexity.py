# backend/newshub/services/sources/perplexity.py
from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .llm_search import LLMSearchSource
from ..errors import SourceConfigurationError
from ..items import CandidateItem
from ..normalizer import extract_domain
from ..priority import TIER1_DOMAINS

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a news aggregator. Return structured data about recent news articles in JSON format. "
    "Each article should have: title, url, source_domain, published_at (ISO format), company_mentioned. "
    "Only return real, verifiable articles with working URLs."
)


def match_company_from_title(title: str, companies: Sequence[str]) -> Optional[str]:
    """First company whose every word appears in the title (case-insensitive)."""
    title_lower = title.lower()
    for company in companies:
        words = company.lower().split()
        if words and all(w in title_lower for w in words):
            return company
    return None


class PerplexitySource(LLMSearchSource):
    """
    Legacy search backend, kept for backward compatibility.

    Same batching and parsing as the LLM news search, but queries the
    Perplexity chat-completions API restricted to a tier-1 outlet allow-list.
    Only built when explicitly listed in NEWS_PROVIDERS.
    """

    name = "perplexity"
    endpoint = "https://api.perplexity.ai/chat/completions"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "sonar",
        domain_allow_list: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> None:
        if not api_key:
            raise SourceConfigurationError("PerplexitySource requires PPLX_API_KEY")
        super().__init__(**kwargs)
        self._api_key = api_key
        self.model = model
        self.domain_allow_list = list(domain_allow_list or TIER1_DOMAINS)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _complete(self, companies: List[str], since: datetime) -> Tuple[str, Dict[str, Any]]:
        query = (
            f"Latest news articles about ({' OR '.join(companies)}) since {since.date().isoformat()}. "
            "Include article title, URL, source domain, and publication date."
        )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "max_tokens": 2000,
            "temperature": 0.1,
            "return_related_questions": False,
            "search_domain_filter": self.domain_allow_list,
        }
        resp = self._request("POST", self.endpoint, headers=self._headers(), json=payload)
        data = resp.json()
        choices = data.get("choices") or []
        content = ""
        if choices and isinstance(choices[0], dict):
            content = ((choices[0].get("message") or {}).get("content")) or ""
        return content, {"query": query, "model": data.get("model", self.model), "response_id": data.get("id")}

    def _element_to_candidate(
        self, item: Dict[str, Any], companies: List[str]
    ) -> Optional[CandidateItem]:
        title = item.get("title")
        url = item.get("url")
        if not (
            self._has_title(title)
            and isinstance(url, str)
            and isinstance(item.get("source_domain"), str)
            and self._acceptable_url(url)
        ):
            return None
        company = match_company_from_title(title, companies)
        if company is None:
            return None
        return CandidateItem(
            title=title.strip(),
            url=url.strip(),
            source_domain=extract_domain(url),
            published_at=item.get("published_at") or self._now().isoformat(),
            company_mention=company.lower(),
        )
