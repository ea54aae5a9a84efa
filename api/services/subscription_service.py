from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.services.auth_service import require_fields, validate_email
from api.services.errors import (
    AlreadyActive,
    GatewayError,
    StorageError,
    SubscriptionNotFound,
    ValidationError,
)
from api.services.plans import Plan, get_plan, list_plans
from api.services.square_gateway import SquareGateway
from db.models.subscription import (
    Subscription,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_STATUSES,
)
from db.models.user import User
from db.repositories.settings_repository import SettingsRepository
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

SUBSCRIPTION_ACTIONS = ("cancel", "pause", "resume")


def sync_subscription_status(
    subscription_repo: SubscriptionRepository,
    user_repo: UserRepository,
    subscription: Subscription,
    status: str,
) -> Subscription:
    """
    Move a local subscription to `status` and bring the owner's
    subscription_active flag in line with whatever is ACTIVE afterwards.

    Shared by the webhook reconciler and customer-initiated changes so both
    paths apply the same transition rules.
    """
    if status not in SUBSCRIPTION_STATUSES:
        raise ValueError(f"Unknown subscription status: {status}")

    now = datetime.now(timezone.utc)
    update = {"status": status, "updated_at": now}
    if status == SUBSCRIPTION_CANCELED and subscription.ended_at is None:
        update["ended_at"] = now
    subscription_repo.update(subscription, update)

    active = subscription_repo.get_active_for_user(subscription.user_id)
    user_repo.update_user(subscription.user_id, {"subscription_active": active is not None})
    logger.info(
        f"Subscription {subscription.id} is now {status}; "
        f"user {subscription.user_id} active={active is not None}"
    )
    return subscription


class SubscriptionService:
    def __init__(
        self,
        user_repo: UserRepository,
        subscription_repo: SubscriptionRepository,
        gateway: SquareGateway,
        settings_repo: Optional[SettingsRepository] = None,
    ):
        self.user_repo = user_repo
        self.subscription_repo = subscription_repo
        self.gateway = gateway
        self.settings_repo = settings_repo

    def list_plans(self) -> list[Plan]:
        return list_plans()

    def create_subscription(
        self,
        email: str,
        first_name: str,
        last_name: str,
        plan_type: str,
        payment_token: str,
    ) -> Subscription:
        require_fields(
            email=email,
            firstName=first_name,
            lastName=last_name,
            planType=plan_type,
            paymentToken=payment_token,
        )
        email = validate_email(email)
        plan = get_plan(plan_type)
        plan_variation_id = self._get_setting(plan.setting_key)
        if not plan_variation_id:
            logger.error(f"{plan.setting_key} is not configured")
            raise GatewayError(f"Billing plan {plan.plan_type} is not configured")

        user = self._resolve_user(email, first_name, last_name)

        try:
            existing = self.subscription_repo.get_active_for_user(user.id)
        except SQLAlchemyError as e:
            logger.error(f"Subscription lookup failed for user {user.id}: {e}")
            raise StorageError("Failed to look up subscriptions")
        if existing:
            logger.info(f"User {user.id} already has active subscription {existing.id}")
            raise AlreadyActive()

        customer_id = self._ensure_customer(user)
        location_id = self._location_id()
        card = self.gateway.create_card(customer_id, payment_token)
        square_subscription = self.gateway.create_subscription(
            location_id=location_id,
            plan_variation_id=plan_variation_id,
            customer_id=customer_id,
            card_id=card["id"],
            price_amount=plan.price_amount,
            currency=plan.currency,
        )
        return self._record_subscription(user, plan, square_subscription["id"])

    def change_subscription(self, user: User, action: str) -> Subscription:
        action = (action or "").lower()
        if action not in SUBSCRIPTION_ACTIONS:
            raise ValidationError(
                f"Invalid action: {action or 'none'}. Choose one of {', '.join(SUBSCRIPTION_ACTIONS)}"
            )

        try:
            if action == "resume":
                subscription = self.subscription_repo.get_paused_for_user(user.id)
            elif action == "pause":
                subscription = self.subscription_repo.get_active_for_user(user.id)
            else:
                subscription = self.subscription_repo.get_active_for_user(
                    user.id
                ) or self.subscription_repo.get_paused_for_user(user.id)
        except SQLAlchemyError as e:
            logger.error(f"Subscription lookup failed for user {user.id}: {e}")
            raise StorageError("Failed to look up subscriptions")

        if subscription is None or not subscription.square_subscription_id:
            raise SubscriptionNotFound()

        square_subscription = self.gateway.update_subscription(
            subscription.square_subscription_id, action
        )
        # Square schedules cancel/pause for the end of the billing period and
        # keeps reporting ACTIVE until then; the webhook carries the change.
        status = (square_subscription.get("status") or "").upper()
        if status in SUBSCRIPTION_STATUSES and status != subscription.status:
            try:
                sync_subscription_status(
                    self.subscription_repo, self.user_repo, subscription, status
                )
            except SQLAlchemyError as e:
                self.subscription_repo.rollback()
                logger.error(f"Failed to record {action} for subscription {subscription.id}: {e}")
                raise StorageError("Failed to update subscription")
        logger.info(f"User {user.id} requested {action} of subscription {subscription.id}")
        return subscription

    def current_subscription(self, user: User) -> Optional[Subscription]:
        try:
            return self.subscription_repo.get_active_for_user(
                user.id
            ) or self.subscription_repo.get_latest_for_user(user.id)
        except SQLAlchemyError as e:
            logger.error(f"Subscription lookup failed for user {user.id}: {e}")
            raise StorageError("Failed to look up subscriptions")

    def _get_setting(self, key: str) -> Optional[str]:
        if self.settings_repo is None:
            return None
        return self.settings_repo.get_setting(key)

    def _resolve_user(self, email: str, first_name: str, last_name: str) -> User:
        try:
            user = self.user_repo.get_user_by_email(email)
            if user:
                return user
            user = User(
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                subscription_active=False,
            )
            self.user_repo.create_user(user)
            logger.info(f"Created user {user.id} ({email}) at checkout")
            return user
        except IntegrityError:
            # Created concurrently; take the winner's row
            self.user_repo.rollback()
            user = self.user_repo.get_user_by_email(email)
            if user:
                return user
            raise StorageError("Failed to create user")
        except SQLAlchemyError as e:
            self.user_repo.rollback()
            logger.error(f"Failed to resolve user {email}: {e}")
            raise StorageError("Failed to create user")

    def _ensure_customer(self, user: User) -> str:
        if user.square_customer_id:
            return user.square_customer_id

        customer = self.gateway.create_customer(
            given_name=user.first_name,
            family_name=user.last_name,
            email=user.email,
            reference_id=str(user.id),
        )
        try:
            self.user_repo.update_user(user.id, {"square_customer_id": customer["id"]})
        except SQLAlchemyError as e:
            self.user_repo.rollback()
            logger.error(
                f"Failed to save Square customer {customer['id']} on user {user.id}: {e}"
            )
            raise StorageError("Failed to save billing customer")
        return customer["id"]

    def _location_id(self) -> str:
        location_id = self._get_setting("SQUARE_LOCATION_ID")
        if location_id:
            return location_id
        return self.gateway.get_location()["id"]

    def _record_subscription(self, user: User, plan: Plan, square_subscription_id: str) -> Subscription:
        now = datetime.now(timezone.utc)
        subscription = Subscription(
            user_id=user.id,
            square_subscription_id=square_subscription_id,
            plan_type=plan.plan_type,
            status=SUBSCRIPTION_ACTIVE,
            price_amount=plan.price_amount,
            currency=plan.currency,
            frequency=plan.frequency,
            started_at=now,
            created_at=now,
        )
        try:
            # Row and subscription_active flag commit together
            self.subscription_repo.create(subscription)
        except SQLAlchemyError as e:
            self.subscription_repo.rollback()
            # Not rolled back at Square: the id goes out with the error for repair
            logger.critical(
                f"Square subscription {square_subscription_id} for user {user.id} "
                f"was not saved locally: {e}"
            )
            raise StorageError(
                "Subscription was created with the payment processor but could not be saved",
                gateway_subscription_id=square_subscription_id,
            )
        logger.info(
            f"User {user.id} subscribed to {plan.plan_type} "
            f"(Square subscription {square_subscription_id})"
        )
        return subscription
