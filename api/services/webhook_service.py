from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import json
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.services.errors import StorageError, ValidationError
from api.services.plans import CURRENCY
from api.services.subscription_service import sync_subscription_status
from db.models.payment import Payment, PAYMENT_FAILED, PAYMENT_SUCCESS
from db.models.subscription import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_STATUSES
from db.repositories.payment_repository import PaymentRepository
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-square-hmacsha256-signature", "x-square-signature")

# Nested objects the handlers read, and the text fields read from each
OBJECT_TEXT_FIELDS = {
    "subscription": ("id", "status", "customer_id", "customerId"),
    "invoice": ("id", "status", "subscription_id", "subscriptionId", "failure_reason", "failureReason"),
}


def _field(obj: dict, snake: str, camel: str):
    # Square sends snake_case; the SDK-shaped payloads use camelCase
    value = obj.get(snake)
    return value if value is not None else obj.get(camel)


@dataclass
class WebhookResult:
    event_type: Optional[str]
    handled: bool
    message: str


class WebhookReconciler:
    """
    Applies Square notifications to local subscription, payment and user
    rows. Replaying an event leaves the store as the first delivery did.
    References we do not know are logged and acknowledged.
    """

    def __init__(
        self,
        user_repo: UserRepository,
        subscription_repo: SubscriptionRepository,
        payment_repo: PaymentRepository,
    ):
        self.user_repo = user_repo
        self.subscription_repo = subscription_repo
        self.payment_repo = payment_repo
        self._handlers = {
            "subscription.created": self._subscription_created,
            "subscription.updated": self._subscription_updated,
            "invoice.payment_made": self._payment_made,
            "invoice.payment_failed": self._payment_failed,
        }

    def handle_event(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        return self.handle(self.parse_event(raw_body, signature))

    def parse_event(self, raw_body: bytes, signature: Optional[str]) -> dict:
        # TODO: verify the HMAC-SHA256 signature once the notification URL and
        # signature key are part of the deployment settings.
        if not signature:
            raise ValidationError("Missing webhook signature")
        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Invalid JSON in webhook body")
        if not isinstance(event, dict):
            raise ValidationError("Invalid JSON in webhook body")
        problem = _shape_problem(event)
        if problem:
            logger.warning(f"Rejected malformed webhook event: {problem}")
            raise ValidationError(f"Malformed webhook event: {problem}")
        return event

    def handle(self, event: dict) -> WebhookResult:
        event_type = event.get("type")
        logger.info(f"Received Square webhook: {event_type} ({event.get('event_id')})")

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled webhook event type: {event_type}")
            return WebhookResult(event_type, False, "Webhook received but not handled")

        data_object = (event.get("data") or {}).get("object") or {}
        try:
            return handler(event_type, data_object, event.get("event_id"))
        except SQLAlchemyError as e:
            self.subscription_repo.rollback()
            logger.error(f"Failed to apply {event_type} webhook: {e}")
            raise StorageError("Failed to apply webhook event")

    def _subscription_created(self, event_type: str, data_object: dict, event_id=None) -> WebhookResult:
        square_subscription = data_object.get("subscription") or {}
        square_id = square_subscription.get("id")
        customer_id = _field(square_subscription, "customer_id", "customerId")
        logger.info(f"Subscription created: {square_id} for customer {customer_id}")

        user = self.user_repo.get_user_by_square_customer_id(customer_id) if customer_id else None
        if user is None:
            logger.warning(f"No local user for Square customer {customer_id}")
            return WebhookResult(event_type, False, "No matching user for customer")

        subscription = self.subscription_repo.get_by_square_id(square_id) if square_id else None
        if subscription is None or subscription.user_id != user.id:
            logger.warning(f"No local subscription {square_id} for user {user.id}")
            return WebhookResult(event_type, False, "No matching subscription")

        if subscription.status != SUBSCRIPTION_ACTIVE:
            sync_subscription_status(
                self.subscription_repo, self.user_repo, subscription, SUBSCRIPTION_ACTIVE
            )
        return WebhookResult(event_type, True, "Subscription created webhook processed")

    def _subscription_updated(self, event_type: str, data_object: dict, event_id=None) -> WebhookResult:
        square_subscription = data_object.get("subscription") or {}
        square_id = square_subscription.get("id")
        status = (square_subscription.get("status") or "").upper()
        logger.info(f"Subscription updated: {square_id} status: {status}")

        if status not in SUBSCRIPTION_STATUSES:
            logger.warning(f"Ignoring unsupported status {status!r} for subscription {square_id}")
            return WebhookResult(event_type, False, f"Status {status or 'missing'} not tracked")

        subscription = self.subscription_repo.get_by_square_id(square_id) if square_id else None
        if subscription is None:
            logger.warning(f"No local subscription for Square subscription {square_id}")
            return WebhookResult(event_type, False, "No matching subscription")

        if subscription.status != status:
            sync_subscription_status(self.subscription_repo, self.user_repo, subscription, status)
        return WebhookResult(event_type, True, "Subscription updated webhook processed")

    def _payment_made(self, event_type: str, data_object: dict, event_id=None) -> WebhookResult:
        invoice = data_object.get("invoice") or {}
        subscription = self._invoice_subscription(invoice)
        if subscription is None:
            return WebhookResult(event_type, False, "No matching subscription")

        self.user_repo.update_user(subscription.user_id, {"subscription_active": True})
        self._record_payment(subscription, invoice, PAYMENT_SUCCESS, event_id)
        return WebhookResult(event_type, True, "Payment success webhook processed")

    def _payment_failed(self, event_type: str, data_object: dict, event_id=None) -> WebhookResult:
        # Access is left alone; there is no suspension after repeated failures
        invoice = data_object.get("invoice") or {}
        subscription = self._invoice_subscription(invoice)
        if subscription is None:
            return WebhookResult(event_type, False, "No matching subscription")

        reason = _field(invoice, "failure_reason", "failureReason")
        if not reason:
            invoice_status = invoice.get("status")
            reason = f"Invoice {invoice_status}" if invoice_status else "Payment failed"
        self._record_payment(subscription, invoice, PAYMENT_FAILED, event_id, reason)
        logger.info(f"Payment failure recorded for user {subscription.user_id}")
        return WebhookResult(event_type, True, "Payment failure webhook processed")

    def _invoice_subscription(self, invoice: dict):
        square_id = _field(invoice, "subscription_id", "subscriptionId")
        subscription = self.subscription_repo.get_by_square_id(square_id) if square_id else None
        if subscription is None:
            logger.warning(f"Invoice {invoice.get('id')} has no local subscription ({square_id})")
        return subscription

    def _record_payment(self, subscription, invoice: dict, status: str, event_id=None, failure_reason=None):
        invoice_id = invoice.get("id")
        if self._already_recorded(invoice_id, status, event_id):
            return None

        amount, currency = _invoice_amount(invoice)
        payment = Payment(
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            amount=amount,
            currency=currency,
            status=status,
            square_payment_id=invoice_id,
            square_event_id=event_id,
            failure_reason=failure_reason,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.payment_repo.create(payment)
        except IntegrityError:
            # A concurrent delivery of the same event got there first
            self.payment_repo.rollback()
            logger.info(f"{status} payment for invoice {invoice_id} recorded concurrently")
            return None
        logger.info(
            f"Recorded {status} payment of {amount} {currency} for subscription {subscription.id}"
        )
        return payment

    def _already_recorded(self, invoice_id, status: str, event_id) -> bool:
        """
        A replayed delivery carries the same event_id. Separate failure events
        for one invoice are separate attempts and each gets a row; an invoice
        is only ever paid once.
        """
        if event_id and self.payment_repo.get_by_event_id(event_id):
            logger.info(f"Webhook event {event_id} already recorded")
            return True
        if not event_id:
            logger.warning(f"{status} event for invoice {invoice_id} has no event_id")
        if not invoice_id:
            logger.warning("Invoice without id, payment cannot be deduplicated")
            return False
        if (status == PAYMENT_SUCCESS or not event_id) and self.payment_repo.get_by_reference(
            invoice_id, status
        ):
            logger.info(f"{status} payment for invoice {invoice_id} already recorded")
            return True
        return False


def _invoice_amount(invoice: dict) -> tuple[int, str]:
    money = _field(invoice, "total_money", "totalMoney")
    if not money:
        payment_requests = _field(invoice, "payment_requests", "paymentRequests") or []
        if payment_requests:
            money = _field(payment_requests[0], "computed_amount_money", "computedAmountMoney")
    money = money or {}
    return int(money.get("amount") or 0), money.get("currency") or CURRENCY


def _money_problem(money, where: str) -> Optional[str]:
    if money is None:
        return None
    if not isinstance(money, dict):
        return f"{where} is not an object"
    amount = money.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
        return f"{where}.amount is not an integer"
    currency = money.get("currency")
    if currency is not None and not isinstance(currency, str):
        return f"{where}.currency is not text"
    return None


def _shape_problem(event: dict) -> Optional[str]:
    """Describe the first field the handlers could not read, or None."""
    for key in ("type", "event_id"):
        if event.get(key) is not None and not isinstance(event[key], str):
            return f"{key} is not text"

    data = event.get("data")
    if data is None:
        return None
    if not isinstance(data, dict):
        return "data is not an object"
    data_object = data.get("object")
    if data_object is None:
        return None
    if not isinstance(data_object, dict):
        return "data.object is not an object"

    for name, fields in OBJECT_TEXT_FIELDS.items():
        nested = data_object.get(name)
        if nested is None:
            continue
        if not isinstance(nested, dict):
            return f"{name} is not an object"
        for field in fields:
            if nested.get(field) is not None and not isinstance(nested[field], str):
                return f"{name}.{field} is not text"

    invoice = data_object.get("invoice") or {}
    problem = _money_problem(_field(invoice, "total_money", "totalMoney"), "invoice.total_money")
    if problem:
        return problem
    payment_requests = _field(invoice, "payment_requests", "paymentRequests")
    if payment_requests is None:
        return None
    if not isinstance(payment_requests, list) or not all(
        isinstance(request, dict) for request in payment_requests
    ):
        return "invoice.payment_requests is not a list of objects"
    if payment_requests:
        return _money_problem(
            _field(payment_requests[0], "computed_amount_money", "computedAmountMoney"),
            "invoice.payment_requests[0].computed_amount_money",
        )
    return None
