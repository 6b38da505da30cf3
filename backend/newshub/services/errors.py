from __future__ import annotations

import enum
import re
from typing import List, Optional

import httpx


class ErrorKind(str, enum.Enum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    SCHEMA = "schema"
    API_CREDITS = "api_credits"
    DATABASE = "database"
    UNKNOWN = "unknown"


class IngestionError(Exception):
    """Base class for errors raised by the ingestion core."""


class SourceUnavailableError(IngestionError):
    """Every batch of a source adapter failed during one run."""

    def __init__(self, provider: str, attempted: int, last_error: BaseException):
        self.provider = provider
        self.attempted = attempted
        super().__init__(
            f"{provider}: all {attempted} batch(es) failed; last error: "
            f"{type(last_error).__name__}: {last_error}"
        )


class SourceConfigurationError(IngestionError):
    """A source adapter is enabled but lacks the credentials it needs."""


class LLMUnavailableError(IngestionError):
    """Both the primary and the fallback model failed to answer."""


# Checked in this order; first match wins.
_KEYWORDS: List[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (
        ErrorKind.API_CREDITS,
        ("insufficient_quota", "quota", "credit", "billing", "payment required", "402"),
    ),
    (ErrorKind.RATE_LIMIT, ("rate limit", "ratelimit", "rate_limit", "too many requests", "429")),
    (
        ErrorKind.DATABASE,
        ("database", "sqlalchemy", "psycopg", "operationalerror", "integrityerror", "sqlstate"),
    ),
    (
        ErrorKind.NETWORK,
        ("network", "fetch", "connect", "connection", "dns", "name resolution", "unreachable"),
    ),
    (ErrorKind.SCHEMA, ("json", "parse", "schema", "decode", "validation", "malformed")),
]


# Request URLs carry query strings and dates ("format=json", "20260402")
# that would otherwise match the keywords above.
_URL_RE = re.compile(r"https?://\S+")


def _status_kind(status: int) -> ErrorKind:
    if status == 408:
        return ErrorKind.TIMEOUT
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status == 402:
        return ErrorKind.API_CREDITS
    if status >= 500:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def _error_chain(exc: BaseException) -> List[BaseException]:
    chain: List[BaseException] = []
    current: Optional[BaseException] = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def _transport_kind(exc: BaseException) -> Optional[ErrorKind]:
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        kind = _status_kind(exc.response.status_code)
        return None if kind is ErrorKind.UNKNOWN else kind
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.NETWORK
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Map an adapter failure to the error taxonomy.

    The exception itself is tried first, then each chained cause, so a
    wrapper such as ``SourceUnavailableError`` is classified by what actually
    went wrong underneath it. httpx errors are classified by type and status
    code; anything else by keywords in its text, with URLs removed.
    """
    for link in _error_chain(exc):
        kind = _transport_kind(link)
        if kind is not None:
            return kind
        text = _URL_RE.sub("", describe_error(link)).lower()
        for kind, needles in _KEYWORDS:
            if any(n in text for n in needles):
                return kind
    return ErrorKind.UNKNOWN
