from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime, timezone

from ..core.db import Base

class TelemetryEvent(Base):
    __tablename__ = "telemetry_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event = Column(String, index=True, nullable=False)   # "ingest_run", "provider_error", …
    payload = Column(JSON, nullable=True)
    ts = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
