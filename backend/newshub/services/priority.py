from __future__ import annotations

import re
from typing import Mapping, Optional

DEFAULT_PRIORITY = 70

# Static trust weights by source domain.
DOMAIN_PRIORITIES: dict[str, int] = {
    # Official company domains
    "qualcomm.com": 100,
    "android.com": 100,
    "samsung.com": 100,
    "whirlpool.com": 100,
    "bestbuy.com": 100,
    # Regulatory filings
    "sec.gov": 100,
    # Tier-1 outlets
    "techcrunch.com": 95,
    "theverge.com": 95,
    "reuters.com": 95,
    "bloomberg.com": 95,
    "wsj.com": 95,
    "engadget.com": 90,
    "androidcentral.com": 90,
    "cnbc.com": 90,
}

TIER1_DOMAINS = [d for d, w in DOMAIN_PRIORITIES.items() if 90 <= w < 100]


class PriorityScorer:
    """Maps a source domain to its trust weight; unknown domains get ``default``."""

    def __init__(
        self,
        weights: Optional[Mapping[str, int]] = None,
        default: int = DEFAULT_PRIORITY,
    ) -> None:
        table = DOMAIN_PRIORITIES if weights is None else weights
        self._weights = {self.normalize_domain(d): int(w) for d, w in table.items()}
        self.default = int(default)

    @staticmethod
    def normalize_domain(domain: Optional[str]) -> str:
        return re.sub(r"^www\.", "", (domain or "").strip().lower())

    def score(self, domain: Optional[str]) -> int:
        return self._weights.get(self.normalize_domain(domain), self.default)
