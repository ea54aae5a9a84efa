from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index
from db.base import Base
from db.models.user import utcnow

# Payment status constants
PAYMENT_SUCCESS = "SUCCESS"
PAYMENT_FAILED = "FAILED"
PAYMENT_PENDING = "PENDING"
PAYMENT_REFUNDED = "REFUNDED"


class Payment(Base):
    """Append-only ledger row, one per settlement attempt."""

    __tablename__ = "payments"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True, index=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")
    status = Column(String(20), nullable=False, index=True)
    square_payment_id = Column(String(255), nullable=True, index=True)  # Square invoice id
    square_event_id = Column(String(255), unique=True, nullable=True)  # Webhook delivery that recorded it
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        # An invoice is paid once; failed attempts may repeat
        Index(
            "uq_payments_success_reference",
            "square_payment_id",
            unique=True,
            sqlite_where=(status == PAYMENT_SUCCESS),
            postgresql_where=(status == PAYMENT_SUCCESS),
        ),
    )
