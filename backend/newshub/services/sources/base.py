from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
import logging
import math
from typing import Any, Callable, List, Optional, Sequence, TypeVar

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import SourceUnavailableError
from ..items import CandidateItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


def batch_aliases(aliases: Sequence[str], max_requests: int) -> List[List[str]]:
    """
    Split aliases into at most ``max_requests`` batches of near-equal size.
    """
    items = [a for a in aliases if a and a.strip()]
    if not items:
        return []
    size = max(1, math.ceil(len(items) / max(1, max_requests)))
    return [items[i : i + size] for i in range(0, len(items), size)]


class BaseSource(ABC):
    """
    A strategy for pulling candidate items from one upstream.

    ``fetch`` may return fewer items than asked for. Raising means the whole
    source failed for this run.
    """

    name: str

    def __init__(
        self,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 20.0,
        max_attempts: int = 2,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)

    @abstractmethod
    def fetch(self, company_aliases: List[str], since: datetime) -> List[CandidateItem]:
        ...

    def close(self) -> None:
        # Injected clients belong to the caller.
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Issue one HTTP request with a bounded timeout.

        Transport errors (connect/read failures, timeouts) are retried up to
        ``max_attempts`` times; HTTP error statuses are raised immediately.
        """

        @retry(
            retry=retry_if_exception_type(httpx.TransportError),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            stop=stop_after_attempt(self.max_attempts),
            reraise=True,
        )
        def _send() -> httpx.Response:
            resp = self._http().request(method, url, timeout=self.timeout, **kwargs)
            resp.raise_for_status()
            return resp

        return _send()

    def _run_batches(
        self,
        batches: Sequence[T],
        run_batch: Callable[[T], List[CandidateItem]],
        describe: Callable[[T], str] = str,
    ) -> List[CandidateItem]:
        """
        Run batches sequentially, isolating failures per batch.

        If every batch fails the source is considered down and
        SourceUnavailableError is raised, chained to the last failure.
        """
        items: List[CandidateItem] = []
        failures = 0
        last_error: Optional[Exception] = None

        for batch in batches:
            try:
                items.extend(run_batch(batch))
            except Exception as e:
                failures += 1
                last_error = e
                logger.warning(
                    "%s batch failed for %s: %s",
                    self.name,
                    describe(batch),
                    e,
                    extra={"provider": self.name, "step": "fetch_batch"},
                )

        if batches and failures == len(batches) and last_error is not None:
            raise SourceUnavailableError(self.name, failures, last_error) from last_error

        return items
