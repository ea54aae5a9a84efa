from sqlalchemy import Column, Integer, String, DateTime
from db.base import Base
from db.models.user import utcnow


class Settings(Base):
    """Runtime configuration stored alongside the data; environment variables win."""

    __tablename__ = "settings"
    id = Column(Integer, primary_key=True)
    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
