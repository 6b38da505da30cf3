"""
Validation and canonicalization of candidate items.

Everything in this module is a pure function over its inputs: no I/O, no
clock reads except where a caller passes one in, and no exceptions escape
``validate``.
"""
from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from urllib.parse import quote, unquote_plus, urlsplit, urlunsplit

from .items import CandidateItem, NormalizedItem

UNKNOWN_DOMAIN = "unknown.com"
DEFAULT_PLACEHOLDER_DOMAINS = ("example.com", "example.org", "example.net")
MIN_TITLE_LENGTH = 3

# Prefix match, case-insensitive: utm_source, utm_campaign, fbclid, ref_src, _ga, ...
TRACKING_PARAM_PATTERN = re.compile(r"^(utm_|fbclid|gclid|ref|source|cmpid|_ga)", re.IGNORECASE)

_COMPACT_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T?(\d{2})?(\d{2})?(\d{2})?Z?$")


class InvalidReason(str, enum.Enum):
    # Declaration order is the precedence order used by validate().
    INVALID_TITLE = "invalid_title"
    INVALID_URL = "invalid_url"
    PLACEHOLDER_URL = "placeholder_url"
    MISSING_DOMAIN = "missing_domain"
    MISSING_DATE = "missing_date"


def is_valid_url(url: Any) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url.strip())
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return False
    if parts.scheme.lower() not in ("http", "https"):
        return False
    host = parts.hostname or ""
    return bool(host) and not any(ch.isspace() for ch in host)


def is_placeholder_url(url: str, placeholder_domains: Iterable[str] = DEFAULT_PLACEHOLDER_DOMAINS) -> bool:
    try:
        host = (urlsplit(url.strip()).hostname or "").lower()
    except ValueError:
        return False
    for domain in placeholder_domains:
        d = domain.lower().strip()
        if d and (host == d or host.endswith("." + d)):
            return True
    return False


def extract_domain(url: Any) -> str:
    """Hostname without a leading ``www.``; ``UNKNOWN_DOMAIN`` when there is none."""
    if not isinstance(url, str):
        return UNKNOWN_DOMAIN
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return UNKNOWN_DOMAIN
    if not host:
        return UNKNOWN_DOMAIN
    return re.sub(r"^www\.", "", host.lower())


def _is_tracking_pair(pair: str) -> bool:
    return bool(TRACKING_PARAM_PATTERN.match(unquote_plus(pair.split("=", 1)[0])))


# Characters left unescaped in the path; existing %XX escapes are kept as-is.
_PATH_SAFE = "/%:@!$&'()*+,;=~"


def canonicalize_url(url: str) -> str:
    """
    Build the dedup key for a URL.

    - drop query params matching TRACKING_PARAM_PATTERN
    - keep the remaining params verbatim, in their original order
    - lowercase the reassembled URL

    Anything that does not parse as an absolute URL falls back to the
    lowercased raw string; dedup then degrades to exact matching for that
    item instead of blocking ingestion.
    """
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
        if not parts.scheme or not parts.netloc:
            return raw.lower()
        kept = [pair for pair in parts.query.split("&") if pair and not _is_tracking_pair(pair)]
        rebuilt = urlunsplit(
            (
                parts.scheme,
                parts.netloc,
                quote(parts.path, safe=_PATH_SAFE) or "/",
                "&".join(kept),
                parts.fragment,
            )
        )
    except ValueError:
        return raw.lower()
    return rebuilt.lower()


def parse_published_at(value: Any) -> Optional[datetime]:
    """
    Parse the date formats our upstreams emit into an aware UTC datetime.

    Handles datetimes, ISO-8601 (``Z`` suffix included), GDELT's
    ``20240115T103000Z`` and compact ``20240115103000``, and bare dates.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        s = str(value).strip()
        if not s:
            return None
        m = _COMPACT_DATE_RE.match(s)
        try:
            if m:
                year, month, day, hh, mm, ss = m.groups()
                parsed = datetime(
                    int(year), int(month), int(day),
                    int(hh or 0), int(mm or 0), int(ss or 0),
                    tzinfo=timezone.utc,
                )
            else:
                if s.endswith("Z"):
                    s = s[:-1] + "+00:00"
                parsed = datetime.fromisoformat(s)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        # Offsets that push the instant past year 1 or 9999.
        return None


def clean_title(title: str) -> str:
    """Collapse whitespace and strip the ``|``/``-`` artifacts some feeds leave."""
    t = re.sub(r"\s+", " ", title or "")
    t = re.sub(r"^[|\-\s]+", "", t)
    t = re.sub(r"[|\-\s]+$", "", t)
    return t.strip()


def validate(
    candidate: CandidateItem,
    placeholder_domains: Iterable[str] = DEFAULT_PLACEHOLDER_DOMAINS,
) -> Optional[InvalidReason]:
    """Return the first failing reason in precedence order, or None when valid."""
    title = candidate.title if isinstance(candidate.title, str) else ""
    if len(title.strip()) < MIN_TITLE_LENGTH:
        return InvalidReason.INVALID_TITLE

    if not is_valid_url(candidate.url):
        return InvalidReason.INVALID_URL

    if is_placeholder_url(candidate.url, placeholder_domains):
        return InvalidReason.PLACEHOLDER_URL

    domain = candidate.source_domain if isinstance(candidate.source_domain, str) else ""
    if not domain.strip() or domain.strip().lower() == UNKNOWN_DOMAIN:
        return InvalidReason.MISSING_DOMAIN

    if parse_published_at(candidate.published_at) is None:
        return InvalidReason.MISSING_DATE

    return None


def normalize(candidate: CandidateItem, *, provider: str, company_slug: str) -> NormalizedItem:
    """
    Build a NormalizedItem from a candidate that already passed ``validate``.

    Raises ValueError if the candidate was not validated first.
    """
    published = parse_published_at(candidate.published_at)
    if published is None or not candidate.url or not candidate.title or not candidate.source_domain:
        raise ValueError("normalize() called on a candidate that failed validation")

    url = candidate.url.strip()
    return NormalizedItem(
        title=candidate.title.strip(),
        url=url,
        url_norm=canonicalize_url(url),
        source_domain=re.sub(r"^www\.", "", candidate.source_domain.strip().lower()),
        published_at=published.isoformat(),
        company_slug=company_slug,
        provider=provider,
        raw_payload=dict(candidate.raw_payload or {}),
        low_confidence=candidate.low_confidence,
    )
