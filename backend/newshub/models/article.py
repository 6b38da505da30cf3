from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from datetime import datetime, timezone

from ..core.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Article(Base):
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(36), ForeignKey("companies.id"), index=True, nullable=False)
    title = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    # Dedup key: canonical lowercase url without tracking params
    url_norm = Column(Text, unique=True, nullable=False)
    source_domain = Column(String, nullable=False)
    published_at = Column(DateTime(timezone=True), index=True, nullable=False)
    priority = Column(Integer, nullable=False)
    provider = Column(String, nullable=False)    # 'ai-news', 'gdelt', 'perplexity', 'sec_edgar'
    raw_json = Column(JSON, nullable=True)
    low_confidence = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
