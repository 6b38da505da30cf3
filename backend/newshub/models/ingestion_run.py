from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from ..core.db import Base

class IngestionRun(Base):
    __tablename__ = "ingestion_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), index=True, nullable=False)
    provider = Column(String, nullable=False)
    item_count = Column(Integer, nullable=False, default=0)
    dedupe_rate = Column(Float, nullable=False, default=0.0)   # percent, 0-100
    scheduled = Column(Boolean, nullable=False, default=False)
    error_kind = Column(String, nullable=True)   # set when the provider failed entirely
    ts = Column(DateTime(timezone=True), index=True, nullable=False)
