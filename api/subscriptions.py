from fastapi import APIRouter, Depends, Request, status
from api.dependencies import get_current_user, get_subscription_service, limiter
from api.models import (
    CreateSubscriptionRequest,
    PlanResponse,
    PlansResponse,
    SubscriptionEnvelope,
    SubscriptionResponse,
)
from api.services.subscription_service import SubscriptionService
from db.models.user import User

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=PlansResponse)
def list_plans(
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    return PlansResponse(
        plans=[PlanResponse.model_validate(plan) for plan in subscription_service.list_plans()]
    )


@router.post("", response_model=SubscriptionEnvelope, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_subscription(
    request: Request,
    body: CreateSubscriptionRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = subscription_service.create_subscription(
        body.email,
        body.first_name,
        body.last_name,
        body.plan_type,
        body.payment_token,
    )
    return SubscriptionEnvelope(
        message="Subscription created successfully",
        subscription=SubscriptionResponse.model_validate(subscription),
    )


@router.get("/current", response_model=SubscriptionEnvelope)
def current_subscription(
    current_user: User = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = subscription_service.current_subscription(current_user)
    if subscription is None:
        return SubscriptionEnvelope(message="No subscription")
    return SubscriptionEnvelope(
        message="Current subscription",
        subscription=SubscriptionResponse.model_validate(subscription),
    )


@router.post("/current/{action}", response_model=SubscriptionEnvelope)
def change_subscription(
    action: str,
    current_user: User = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = subscription_service.change_subscription(current_user, action)
    return SubscriptionEnvelope(
        message=f"Subscription {action} requested",
        subscription=SubscriptionResponse.model_validate(subscription),
    )
