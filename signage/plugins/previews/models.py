"""
SQLAlchemy model for short-lived display previews. Expiry is a column, checked on every read.
"""
from sqlalchemy import Column, String, DateTime, JSON

from signage.core.db import Base


class PreviewToken(Base):
    """A customization snapshot reachable by token until expires_at."""
    __tablename__ = "preview_tokens"

    token = Column(String(64), primary_key=True)
    config = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=False), nullable=False)
    expires_at = Column(DateTime(timezone=False), nullable=False, index=True)
