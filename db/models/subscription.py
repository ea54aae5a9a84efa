from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index
from db.base import Base
from db.models.user import utcnow

# Subscription status constants (the values clients see)
SUBSCRIPTION_PENDING = "PENDING"
SUBSCRIPTION_ACTIVE = "ACTIVE"
SUBSCRIPTION_CANCELED = "CANCELED"
SUBSCRIPTION_PAUSED = "PAUSED"

SUBSCRIPTION_STATUSES = (
    SUBSCRIPTION_PENDING,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_PAUSED,
)


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    square_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    plan_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=SUBSCRIPTION_PENDING, index=True)
    price_amount = Column(Integer, nullable=False)  # Minor units, 299 is £2.99
    currency = Column(String(3), nullable=False, default="GBP")
    frequency = Column(String(20), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    __table_args__ = (
        # At most one ACTIVE subscription per user
        Index(
            "uq_subscriptions_active_user",
            "user_id",
            unique=True,
            sqlite_where=(status == SUBSCRIPTION_ACTIVE),
            postgresql_where=(status == SUBSCRIPTION_ACTIVE),
        ),
    )
