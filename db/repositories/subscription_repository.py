from sqlalchemy.orm import Session
from db.models.subscription import (
    Subscription,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_PAUSED,
)
from db.models.user import User


class SubscriptionRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, subscription: Subscription) -> Subscription:
        """Insert a subscription. An ACTIVE one raises its owner's flag in the same commit."""
        if subscription.status == SUBSCRIPTION_ACTIVE:
            owner = self.db.query(User).filter(User.id == subscription.user_id).first()
            if owner is not None:
                owner.subscription_active = True
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def get_by_square_id(self, square_subscription_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.square_subscription_id == square_subscription_id)
            .first()
        )

    def get_active_for_user(self, user_id: int) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status == SUBSCRIPTION_ACTIVE,
            )
            .first()
        )

    def get_paused_for_user(self, user_id: int) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status == SUBSCRIPTION_PAUSED,
            )
            .order_by(Subscription.id.desc())
            .first()
        )

    def get_latest_for_user(self, user_id: int) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.id.desc())
            .first()
        )

    def update(self, subscription: Subscription, update_data: dict) -> Subscription:
        for key, value in update_data.items():
            if hasattr(subscription, key):
                setattr(subscription, key, value)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def rollback(self):
        self.db.rollback()
