# backend/newshub/services/sources/llm_search.py
from __future__ import annotations

from abc import abstractmethod
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .base import BaseSource, batch_aliases
from ..items import CandidateItem
from ..llm import generate_text
from ..normalizer import (
    DEFAULT_PLACEHOLDER_DOMAINS,
    MIN_TITLE_LENGTH,
    extract_domain,
    is_placeholder_url,
    is_valid_url,
)

logger = logging.getLogger(__name__)

MAX_FALLBACK_URLS = 5
_BARE_URL_RE = re.compile(r"https?://[^\s\)\]\"'<>]+")


def _balanced_block(text: str, start: int) -> Optional[str]:
    """Return the bracket-balanced block starting at ``text[start]``, honouring JSON strings."""
    pairs = {"[": "]", "{": "}"}
    stack: List[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in ("]", "}"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start : i + 1]
    return None


def extract_json_block(text: str) -> Optional[Any]:
    """
    Find and decode the first balanced JSON array of objects in ``text``
    (else the first balanced object). Returns None when nothing decodes.

    Arrays holding no objects are skipped, so citation markers like ``[1]``
    are not mistaken for the payload.
    """
    if not text:
        return None
    empty: Optional[list] = None
    for opener in ("[", "{"):
        pos = text.find(opener)
        while pos != -1:
            block = _balanced_block(text, pos)
            if block is not None:
                try:
                    decoded = json.loads(block)
                except json.JSONDecodeError:
                    decoded = None
                if isinstance(decoded, dict):
                    return decoded
                if isinstance(decoded, list):
                    if any(isinstance(d, dict) for d in decoded):
                        return decoded
                    if not decoded and empty is None:
                        empty = decoded
            pos = text.find(opener, pos + 1)
    # An explicit "[]" means the model found nothing.
    return empty


def extract_bare_urls(text: str, limit: int = MAX_FALLBACK_URLS) -> List[str]:
    urls: List[str] = []
    for match in _BARE_URL_RE.findall(text or ""):
        url = match.rstrip(".,;:!?")
        if url not in urls:
            urls.append(url)
        if len(urls) >= limit:
            break
    return urls


class LLMSearchSource(BaseSource):
    """
    Shared machinery for sources that ask a generative backend for articles.

    Aliases are split into batches so a run never issues more than
    ``max_requests_per_run`` prompts. Each response is parsed in two stages:

    1. strict: decode the first balanced JSON block and validate each
       element via ``_element_to_candidate``;
    2. fallback, only when no JSON block decodes: pull bare URLs out of the
       text and synthesize titles. These candidates carry
       ``low_confidence=True``.
    """

    def __init__(
        self,
        *,
        max_requests_per_run: int = 8,
        placeholder_domains: Iterable[str] = DEFAULT_PLACEHOLDER_DOMAINS,
        now: Optional[Callable[[], datetime]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.max_requests_per_run = max(1, max_requests_per_run)
        self.placeholder_domains = tuple(placeholder_domains)
        self._now = now or (lambda: datetime.now(timezone.utc))

    @abstractmethod
    def _complete(self, companies: List[str], since: datetime) -> Tuple[str, Dict[str, Any]]:
        """Return (response_text, provenance) for one batch."""

    @abstractmethod
    def _element_to_candidate(
        self, item: Dict[str, Any], companies: List[str]
    ) -> Optional[CandidateItem]:
        ...

    def fetch(self, company_aliases: List[str], since: datetime) -> List[CandidateItem]:
        batches = batch_aliases(company_aliases, self.max_requests_per_run)
        return self._run_batches(
            batches,
            lambda batch: self._fetch_batch(batch, since),
            describe=lambda batch: ", ".join(batch),
        )

    def _fetch_batch(self, companies: List[str], since: datetime) -> List[CandidateItem]:
        content, provenance = self._complete(companies, since)
        if not content:
            return []
        candidates = self.parse_content(content, companies)
        for c in candidates:
            c.raw_payload = {**provenance, **c.raw_payload}
        return candidates

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_content(self, content: str, companies: List[str]) -> List[CandidateItem]:
        parsed = extract_json_block(content)
        if parsed is None:
            logger.warning(
                "%s: no JSON block in response, falling back to URL extraction",
                self.name,
                extra={"provider": self.name, "step": "parse_fallback"},
            )
            return self.parse_free_text(content, companies)

        if isinstance(parsed, dict) and isinstance(parsed.get("articles"), list):
            elements = parsed["articles"]
        elif isinstance(parsed, list):
            elements = parsed
        else:
            elements = [parsed]

        candidates: List[CandidateItem] = []
        for element in elements:
            if not isinstance(element, dict):
                continue
            candidate = self._element_to_candidate(element, companies)
            if candidate is not None:
                candidate.raw_payload = {"parse_mode": "strict", "element": element}
                candidates.append(candidate)
        return candidates

    def parse_free_text(self, content: str, companies: List[str]) -> List[CandidateItem]:
        lowered = content.lower()
        company = next((c for c in companies if c.lower() in lowered), companies[0] if companies else "")
        now_iso = self._now().isoformat()

        out: List[CandidateItem] = []
        for url in extract_bare_urls(content):
            domain = extract_domain(url)
            out.append(
                CandidateItem(
                    title=f"Recent {company} news from {domain}",
                    url=url,
                    source_domain=domain,
                    published_at=now_iso,
                    company_mention=company.lower(),
                    raw_payload={"parse_mode": "fallback"},
                    low_confidence=True,
                )
            )
        return out

    def _acceptable_url(self, url: Any) -> bool:
        return is_valid_url(url) and not is_placeholder_url(url, self.placeholder_domains)

    @staticmethod
    def _has_title(value: Any) -> bool:
        return isinstance(value, str) and len(value.strip()) >= MIN_TITLE_LENGTH


class AINewsSource(LLMSearchSource):
    """
    Generic LLM-backed news search.

    The model is asked for a JSON array of articles naming which tracked
    company each one is about (``company_mentioned``).
    """

    name = "ai-news"

    def __init__(self, *, generate: Optional[Callable[[str], str]] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._generate = generate or (lambda prompt: generate_text(prompt))

    def build_prompt(self, companies: List[str], since: datetime) -> str:
        companies_str = " OR ".join(companies)
        since_str = since.date().isoformat()
        return (
            f"Find recent news articles published since {since_str} about these companies: {companies_str}.\n\n"
            "Return a JSON array with each article having these exact fields:\n"
            "- title: string (article headline)\n"
            "- url: string (full article URL, must be real and accessible)\n"
            '- source_domain: string (domain name like "techcrunch.com")\n'
            '- published_at: string (ISO 8601 format like "2024-01-15T10:30:00Z")\n'
            "- company_mentioned: string (which company from the list this article is about)\n\n"
            "Focus on business, technology, and product news. Only return real, verifiable articles "
            "with working URLs. Return maximum 10 articles per batch.\n\n"
            "Example format:\n"
            "[\n"
            "  {\n"
            '    "title": "Company X announces new product",\n'
            '    "url": "https://techcrunch.com/2024/01/15/company-x-announces-new-product",\n'
            '    "source_domain": "techcrunch.com",\n'
            '    "published_at": "2024-01-15T10:30:00Z",\n'
            '    "company_mentioned": "Company X"\n'
            "  }\n"
            "]"
        )

    def _complete(self, companies: List[str], since: datetime) -> Tuple[str, Dict[str, Any]]:
        prompt = self.build_prompt(companies, since)
        text = self._generate(prompt)
        return text or "", {"query": prompt, "companies_searched": list(companies)}

    def _element_to_candidate(
        self, item: Dict[str, Any], companies: List[str]
    ) -> Optional[CandidateItem]:
        title = item.get("title")
        url = item.get("url")
        mentioned = item.get("company_mentioned")
        if not (
            self._has_title(title)
            and isinstance(url, str)
            and isinstance(item.get("source_domain"), str)
            and isinstance(mentioned, str)
            and self._acceptable_url(url)
        ):
            return None
        return CandidateItem(
            title=title.strip(),
            url=url.strip(),
            source_domain=extract_domain(url),
            published_at=item.get("published_at") or self._now().isoformat(),
            company_mention=mentioned.strip().lower(),
        )
