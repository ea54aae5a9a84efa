# api/dependencies.py
from typing import Optional
import os
from fastapi import Depends, Header
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session
from db.engine import SessionLocal
from db.models.user import User
from db.repositories.payment_repository import PaymentRepository
from db.repositories.settings_repository import SettingsRepository
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository
from api.services.auth_service import AuthService, extract_bearer_token
from api.services.square_gateway import SquareGateway
from api.services.subscription_service import SubscriptionService
from api.services.webhook_service import WebhookReconciler

# Shared by every router; main.py registers it on app.state
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["100/minute"],
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_settings_repository(db: Session = Depends(get_db)):
    return SettingsRepository(db)


def get_auth_service(
    db: Session = Depends(get_db),
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    return AuthService(
        UserRepository(db),
        SubscriptionRepository(db),
        settings_repo.get_setting("JWT_SECRET"),
    )


def get_billing_gateway(
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    return SquareGateway.from_settings(settings_repo)


def get_subscription_service(
    db: Session = Depends(get_db),
    gateway: SquareGateway = Depends(get_billing_gateway),
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    return SubscriptionService(
        UserRepository(db),
        SubscriptionRepository(db),
        gateway,
        settings_repo,
    )


def get_webhook_reconciler(db: Session = Depends(get_db)):
    return WebhookReconciler(
        UserRepository(db),
        SubscriptionRepository(db),
        PaymentRepository(db),
    )


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    return auth_service.verify(extract_bearer_token(authorization))


def client_ip(request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
