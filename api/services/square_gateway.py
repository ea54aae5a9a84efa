from datetime import date
from typing import Optional
import logging
import uuid

import requests

from api.services.errors import GatewayError
from db.repositories.settings_repository import SettingsRepository

logger = logging.getLogger(__name__)

SQUARE_VERSION = "2023-10-18"
PRODUCTION_URL = "https://connect.squareup.com"
SANDBOX_URL = "https://connect.squareupsandbox.com"
DEFAULT_TIMEOUT = 10
BILLING_TIMEZONE = "Europe/London"


class SquareGateway:
    """
    Thin client for the Square REST endpoints the billing flow needs.

    Every call either returns the decoded object Square sent back or raises
    GatewayError. Square's own error text is passed on; the access token
    never appears in errors or logs.
    """

    def __init__(
        self,
        access_token: Optional[str],
        environment: str = "sandbox",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.access_token = access_token
        self.environment = (environment or "sandbox").lower()
        self.base_url = PRODUCTION_URL if self.environment == "production" else SANDBOX_URL
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings_repo: SettingsRepository) -> "SquareGateway":
        return cls(
            access_token=settings_repo.get_setting("SQUARE_ACCESS_TOKEN"),
            environment=settings_repo.get_setting("SQUARE_ENVIRONMENT", "sandbox"),
            timeout=float(settings_repo.get_setting("SQUARE_TIMEOUT", str(DEFAULT_TIMEOUT))),
        )

    def _headers(self) -> dict:
        return {
            "Square-Version": SQUARE_VERSION,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @staticmethod
    def _error_detail(data: dict) -> Optional[str]:
        errors = data.get("errors") if isinstance(data, dict) else None
        if not errors:
            return None
        first = errors[0]
        return first.get("detail") or first.get("code")

    def _request(self, method: str, path: str, payload: dict = None) -> dict:
        if not self.access_token:
            logger.error("Square access token is not configured")
            raise GatewayError("Billing gateway is not configured")

        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Square {method} {path} failed: {e}")
            raise GatewayError("Payment processor is unavailable")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            detail = self._error_detail(data) or f"Square API error: {response.status_code}"
            logger.error(f"Square {method} {path} returned {response.status_code}: {detail}")
            raise GatewayError(detail)
        return data

    def create_customer(
        self, given_name: str, family_name: str, email: str, reference_id: str
    ) -> dict:
        data = self._request(
            "POST",
            "/v2/customers",
            {
                "idempotency_key": str(uuid.uuid4()),
                "given_name": given_name,
                "family_name": family_name,
                "email_address": email,
                "reference_id": str(reference_id),  # Links back to our user id
            },
        )
        customer = data.get("customer")
        if not customer:
            raise GatewayError("Square did not return a customer")
        logger.info(f"Created Square customer {customer.get('id')} for user {reference_id}")
        return customer

    def create_card(self, customer_id: str, source_id: str) -> dict:
        """Store a card on file from a Web Payments SDK token."""
        data = self._request(
            "POST",
            "/v2/cards",
            {
                "idempotency_key": str(uuid.uuid4()),
                "source_id": source_id,
                "card": {"customer_id": customer_id},
            },
        )
        card = data.get("card")
        if not card:
            raise GatewayError("Square did not return a card")
        return card

    def create_subscription(
        self,
        location_id: str,
        plan_variation_id: str,
        customer_id: str,
        card_id: str,
        price_amount: int,
        currency: str,
    ) -> dict:
        data = self._request(
            "POST",
            "/v2/subscriptions",
            {
                "idempotency_key": str(uuid.uuid4()),
                "location_id": location_id,
                "plan_variation_id": plan_variation_id,
                "customer_id": customer_id,
                "card_id": card_id,
                "start_date": date.today().isoformat(),
                "price_override_money": {"amount": price_amount, "currency": currency},
                "timezone": BILLING_TIMEZONE,
            },
        )
        subscription = data.get("subscription")
        if not subscription or not subscription.get("id"):
            raise GatewayError("Square did not return a subscription")
        logger.info(f"Created Square subscription {subscription['id']} for customer {customer_id}")
        return subscription

    def cancel_subscription(self, subscription_id: str) -> dict:
        return self._request("POST", f"/v2/subscriptions/{subscription_id}/cancel").get(
            "subscription", {}
        )

    def pause_subscription(self, subscription_id: str, reason: Optional[str] = None) -> dict:
        return self._request(
            "POST",
            f"/v2/subscriptions/{subscription_id}/pause",
            {"pause_reason": reason or "CUSTOMER_CHOICE"},
        ).get("subscription", {})

    def resume_subscription(self, subscription_id: str) -> dict:
        return self._request(
            "POST",
            f"/v2/subscriptions/{subscription_id}/resume",
            {
                "resume_effective_date": date.today().isoformat(),
                "resume_change_timing": "IMMEDIATE",
            },
        ).get("subscription", {})

    def update_subscription(
        self, subscription_id: str, action: str, reason: Optional[str] = None
    ) -> dict:
        if action == "cancel":
            return self.cancel_subscription(subscription_id)
        if action == "pause":
            return self.pause_subscription(subscription_id, reason)
        if action == "resume":
            return self.resume_subscription(subscription_id)
        raise ValueError(f"Invalid action: {action}")

    def get_location(self) -> dict:
        """First ACTIVE location on the account; subscriptions need one."""
        locations = self._request("GET", "/v2/locations").get("locations") or []
        for location in locations:
            if location.get("status") == "ACTIVE":
                return location
        raise GatewayError("No active Square location found")

