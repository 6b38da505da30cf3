from __future__ import annotations

from functools import lru_cache
import logging

from openai import OpenAI

from ..core.config import get_settings
from .errors import LLMUnavailableError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Centralised factory for the OpenAI‑compatible client used for news search.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.

    Every request is bounded by HTTP_TIMEOUT_SECONDS; SDK-level retries are
    disabled because batch isolation in the adapters already covers failures.
    """
    settings = get_settings()
    timeout = settings.HTTP_TIMEOUT_SECONDS * 3

    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            timeout=timeout,
            max_retries=0,
            default_headers={"X-Title": "NewsHub Ingestion"},
        )

    if settings.OPENAI_API_KEY:
        return OpenAI(api_key=settings.OPENAI_API_KEY.strip(), timeout=timeout, max_retries=0)

    raise RuntimeError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


def llm_configured() -> bool:
    settings = get_settings()
    return bool(settings.OPENROUTER_API_KEY or settings.OPENAI_API_KEY)


def generate_text(
    prompt: str,
    *,
    model: str | None = None,
    fallback_model: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    client: OpenAI | None = None,
) -> str:
    """
    Send a single-turn prompt and return the completion text.

    Tries ``model`` first and ``fallback_model`` second. Raises
    LLMUnavailableError chained to the last failure when neither answers.
    """
    settings = get_settings()
    client = client or get_llm_client()
    primary = model or settings.LLM_NEWS_MODEL
    fallback = fallback_model if fallback_model is not None else settings.LLM_NEWS_FALLBACK_MODEL
    models = [primary] + ([fallback] if fallback and fallback != primary else [])

    last_error: Exception | None = None
    for m in models:
        try:
            response = client.chat.completions.create(
                model=m,
                messages=[{"role": "user", "content": prompt}],
                temperature=settings.LLM_TEMPERATURE if temperature is None else temperature,
                max_tokens=max_tokens or settings.LLM_MAX_TOKENS,
            )
            logger.info("LLM call succeeded with %s", m, extra={"step": "llm_generate"})
            return response.choices[0].message.content or ""
        except Exception as e:
            logger.warning("LLM call with %s failed: %s", m, e, extra={"step": "llm_generate"})
            last_error = e

    raise LLMUnavailableError(f"all models failed ({', '.join(models)})") from last_error
