from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60


def query_hash(*parts: Any) -> str:
    """Stable hash over the values that determine an upstream query's result."""
    joined = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


class ResponseCache:
    """
    TTL cache for upstream responses, backed by Redis.

    Keys look like ``articles:{provider}:{query_hash}`` and values are JSON
    lists of candidate dicts. Construct one per pipeline and hand it to the
    adapters that need it; nothing here is process-global.

    Redis problems never fail ingestion: a read error is a miss and a write
    error is logged and ignored.
    """

    def __init__(self, client: Optional[Any] = None, url: Optional[str] = None) -> None:
        self._client = client
        self._url = url

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._url:
                raise RuntimeError("ResponseCache needs either a redis client or a REDIS_URL")
            self._client = redis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
        return self._client

    @staticmethod
    def article_key(provider: str, qhash: str) -> str:
        return f"articles:{provider}:{qhash}"

    def get_articles(self, provider: str, qhash: str) -> Optional[List[Dict[str, Any]]]:
        key = self.article_key(provider, qhash)
        try:
            val = self._get_client().get(key)
        except redis.RedisError as e:
            logger.warning("Cache get failed for %s: %s", key, e, extra={"provider": provider, "step": "cache_get"})
            return None
        if val is None:
            return None
        try:
            data = json.loads(val)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key, extra={"provider": provider, "step": "cache_get"})
            return None
        return data if isinstance(data, list) else None

    def set_articles(
        self,
        provider: str,
        qhash: str,
        items: List[Dict[str, Any]],
        ttl: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        key = self.article_key(provider, qhash)
        try:
            self._get_client().set(key, json.dumps(items, default=str), ex=ttl)
        except redis.RedisError as e:
            logger.warning("Cache set failed for %s: %s", key, e, extra={"provider": provider, "step": "cache_set"})
