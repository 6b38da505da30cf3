# backend/newshub/services/sources/edgar.py
from __future__ import annotations

from datetime import datetime, timezone
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from .base import BaseSource
from ..items import CandidateItem
from ..normalizer import parse_published_at

logger = logging.getLogger(__name__)

FORM_LABELS = {
    "10-K": "Annual Report",
    "10-Q": "Quarterly Report",
    "8-K": "Current Report",
    "20-F": "Annual Report (Foreign Private Issuer)",
    "6-K": "Report of Foreign Private Issuer",
}


def _normalize_name(s: str) -> str:
    """Lowercase, drop legal suffixes and punctuation: 'QUALCOMM INC/DE' -> 'qualcomm'."""
    if not s:
        return ""
    s = s.lower().strip()
    s = re.sub(r"/[a-z]{2}/?$", "", s)
    s = re.sub(r"\b(inc|llc|ltd|limited|corp|corporation|co|company|plc|holdings)\b\.?", "", s)
    s = re.sub(r"[^a-z0-9\s]", "", s)
    return " ".join(s.split())


class EdgarFilingsSource(BaseSource):
    """
    Regulatory filings from SEC EDGAR.

    Each alias is matched to a registrant CIK through SEC's ticker file (by
    ticker or normalized company name); the registrant's recent submissions
    are then filtered by form type and date. Aliases that are not SEC
    registrants simply yield nothing.
    """

    name = "sec_edgar"
    tickers_url = "https://www.sec.gov/files/company_tickers.json"
    submissions_url = "https://data.sec.gov/submissions/CIK{cik:010d}.json"
    archive_url = "https://www.sec.gov/Archives/edgar/data/{cik}/{accession}/{document}"

    def __init__(
        self,
        *,
        user_agent: str,
        max_filings_per_company: int = 3,
        form_types: Sequence[str] = ("10-K", "10-Q", "8-K"),
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.user_agent = user_agent
        self.max_filings_per_company = max(1, max_filings_per_company)
        self.form_types = {f.strip().upper() for f in form_types if f and f.strip()}
        self._cik_index: Optional[Dict[str, int]] = None

    def _headers(self) -> Dict[str, str]:
        # SEC rejects requests without a descriptive User-Agent.
        return {"User-Agent": self.user_agent, "Accept": "application/json"}

    def _load_cik_index(self) -> Dict[str, int]:
        if self._cik_index is None:
            resp = self._request("GET", self.tickers_url, headers=self._headers())
            data = resp.json()
            index: Dict[str, int] = {}
            rows = data.values() if isinstance(data, dict) else data
            for row in rows:
                if not isinstance(row, dict) or row.get("cik_str") is None:
                    continue
                cik = int(row["cik_str"])
                ticker = str(row.get("ticker") or "").strip().lower()
                name = _normalize_name(str(row.get("title") or ""))
                if ticker:
                    index.setdefault(f"ticker:{ticker}", cik)
                if name:
                    index.setdefault(f"name:{name}", cik)
            self._cik_index = index
        return self._cik_index

    def lookup_cik(self, alias: str) -> Optional[int]:
        index = self._load_cik_index()
        name = _normalize_name(alias)
        return index.get(f"name:{name}") or index.get(f"ticker:{alias.strip().lower()}")

    def fetch(self, company_aliases: List[str], since: datetime) -> List[CandidateItem]:
        aliases = [a for a in company_aliases if a and a.strip()]
        return self._run_batches(aliases, lambda alias: self._fetch_for_company(alias, since))

    def _fetch_for_company(self, alias: str, since: datetime) -> List[CandidateItem]:
        cik = self.lookup_cik(alias)
        if cik is None:
            logger.info(
                "No SEC registrant found for '%s'",
                alias,
                extra={"provider": self.name, "step": "lookup_cik"},
            )
            return []

        resp = self._request("GET", self.submissions_url.format(cik=cik), headers=self._headers())
        recent = ((resp.json() or {}).get("filings") or {}).get("recent") or {}

        forms = recent.get("form") or []
        accessions = recent.get("accessionNumber") or []
        filing_dates = recent.get("filingDate") or []
        documents = recent.get("primaryDocument") or []
        descriptions = recent.get("primaryDocDescription") or []
        accepted = recent.get("acceptanceDateTime") or []

        since_utc = since if since.tzinfo else since.replace(tzinfo=timezone.utc)
        out: List[CandidateItem] = []
        for i, form in enumerate(forms):
            if len(out) >= self.max_filings_per_company:
                break
            form = str(form).upper()
            if form not in self.form_types or i >= len(accessions) or i >= len(documents):
                continue
            filed = parse_published_at(accepted[i] if i < len(accepted) and accepted[i] else None) or (
                parse_published_at(filing_dates[i]) if i < len(filing_dates) else None
            )
            if filed is None or filed < since_utc:
                continue

            accession = str(accessions[i])
            description = (descriptions[i] if i < len(descriptions) else "") or FORM_LABELS.get(form, "Filing")
            out.append(
                CandidateItem(
                    title=f"{alias} - {form} {description}",
                    url=self.archive_url.format(
                        cik=cik,
                        accession=accession.replace("-", ""),
                        document=documents[i],
                    ),
                    source_domain="sec.gov",
                    published_at=filed.isoformat(),
                    company_mention=alias.lower(),
                    raw_payload={
                        "form_type": form,
                        "cik": cik,
                        "accession_number": accession,
                        "company": alias,
                        "filing_date": filing_dates[i] if i < len(filing_dates) else None,
                    },
                )
            )
        return out
