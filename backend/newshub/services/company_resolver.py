from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .items import CompanyRecord, configured_aliases_for

logger = logging.getLogger(__name__)


def _key(s: str) -> str:
    return " ".join((s or "").lower().split())


class CompanyResolver:
    """
    Resolve free-text company mentions to internal company ids.

    Built once per run. Keys are lowercased canonical names plus aliases
    (stored on the company row and configured in COMPANY_ALIASES, keyed by
    canonical name or its slug).

    Lookup:
    1. exact (case-insensitive) key match;
    2. substring match in either direction, scanning keys longest first and
       alphabetically within a length, so the same input always resolves to
       the same company.
    """

    def __init__(self, key_to_company: Mapping[str, str]) -> None:
        self._map: Dict[str, str] = {_key(k): v for k, v in key_to_company.items() if _key(k)}
        self._ordered_keys: List[str] = sorted(self._map, key=lambda k: (-len(k), k))

    @classmethod
    def from_companies(
        cls,
        companies: Iterable[CompanyRecord],
        configured_aliases: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> "CompanyResolver":
        mapping: Dict[str, str] = {}
        for company in companies:
            canonical = _key(company.canonical_name)
            mapping[canonical] = company.id
            extra = configured_aliases_for(company.canonical_name, configured_aliases)
            for alias in list(company.aliases) + extra:
                if _key(alias):
                    mapping[_key(alias)] = company.id
        return cls(mapping)

    def __len__(self) -> int:
        return len(self._map)

    def resolve(self, mention: Optional[str]) -> Optional[str]:
        m = _key(mention or "")
        if not m:
            return None

        exact = self._map.get(m)
        if exact is not None:
            return exact

        best_len: Optional[int] = None
        matched: List[str] = []
        for k in self._ordered_keys:
            if best_len is not None and len(k) < best_len:
                break
            if k in m or m in k:
                best_len = len(k)
                matched.append(k)

        if not matched:
            return None

        company_ids = {self._map[k] for k in matched}
        if len(company_ids) > 1:
            logger.warning(
                "Ambiguous company mention '%s' matched %s; using '%s'",
                mention,
                matched,
                matched[0],
                extra={"step": "resolve_company", "reason": "ambiguous_mention"},
            )
        return self._map[matched[0]]
