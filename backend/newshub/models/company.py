from sqlalchemy import Column, String, JSON
import uuid
from ..core.db import Base

class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    canonical_name = Column(String, unique=True, nullable=False)
    aliases = Column(JSON, nullable=True)   # ["Snapdragon", ...], merged with COMPANY_ALIASES
