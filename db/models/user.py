from sqlalchemy import Column, Integer, String, Boolean, DateTime
from db.base import Base
from datetime import datetime, timezone


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)  # Always lower-cased
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    password_hash = Column(String, nullable=True)  # Absent for checkout-only users
    square_customer_id = Column(String(255), unique=True, nullable=True, index=True)
    subscription_active = Column(Boolean, default=False, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
