from sqlalchemy.orm import Session
from db.models.payment import Payment


class PaymentRepository:
    """Payments are a ledger: rows are inserted, never updated or deleted."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def get_by_event_id(self, square_event_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.square_event_id == square_event_id).first()

    def get_by_reference(self, square_payment_id: str, status: str) -> Payment | None:
        return (
            self.db.query(Payment)
            .filter(
                Payment.square_payment_id == square_payment_id,
                Payment.status == status,
            )
            .first()
        )

    def rollback(self):
        self.db.rollback()
