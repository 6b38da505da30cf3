from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union


@dataclass
class CandidateItem:
    """
    Raw item returned by a source adapter, before validation.

    Fields mirror what upstreams give us; nothing here is trusted until
    ``normalizer.validate`` has accepted it. ``low_confidence`` marks items
    synthesized by a permissive fallback parser rather than read from
    structured upstream data.
    """

    title: Optional[str]
    url: Optional[str]
    source_domain: Optional[str]
    published_at: Union[str, datetime, None]
    company_mention: Optional[str]
    raw_payload: Dict[str, Any] = field(default_factory=dict)
    low_confidence: bool = False

    def to_dict(self) -> Dict[str, Any]:
        published = self.published_at
        if isinstance(published, datetime):
            published = published.isoformat()
        return {
            "title": self.title,
            "url": self.url,
            "source_domain": self.source_domain,
            "published_at": published,
            "company_mention": self.company_mention,
            "raw_payload": self.raw_payload,
            "low_confidence": self.low_confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateItem":
        return cls(
            title=data.get("title"),
            url=data.get("url"),
            source_domain=data.get("source_domain"),
            published_at=data.get("published_at"),
            company_mention=data.get("company_mention"),
            raw_payload=data.get("raw_payload") or {},
            low_confidence=bool(data.get("low_confidence", False)),
        )


@dataclass(frozen=True)
class NormalizedItem:
    title: str
    url: str
    url_norm: str
    source_domain: str
    published_at: str  # ISO-8601, UTC
    company_slug: str
    provider: str
    raw_payload: Dict[str, Any] = field(default_factory=dict, compare=False)
    low_confidence: bool = False


@dataclass(frozen=True)
class CompanyRecord:
    id: str
    canonical_name: str
    aliases: Tuple[str, ...] = ()


def company_slug(canonical_name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (canonical_name or "").lower())


def configured_aliases_for(
    canonical_name: str,
    configured_aliases: Optional[Mapping[str, Sequence[str]]],
) -> List[str]:
    """
    Aliases configured for one company. COMPANY_ALIASES keys may be written as
    the canonical name or its slug ("Best Buy", "bestbuy", "AT&T", "att");
    both sides are compared by slug.
    """
    slug = company_slug(canonical_name)
    for key, aliases in (configured_aliases or {}).items():
        if company_slug(key) == slug:
            return list(aliases)
    return []
