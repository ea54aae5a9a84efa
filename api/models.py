from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional


class CamelModel(BaseModel):
    """JSON keys are camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Requests. Fields are optional so the services can report every missing one.

class RegisterRequest(CamelModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LogoutRequest(CamelModel):
    session_token: Optional[str] = None


class CreateSubscriptionRequest(CamelModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    plan_type: Optional[str] = None
    payment_token: Optional[str] = None


# Responses

class SubscriptionSummary(CamelModel):
    plan_type: str
    frequency: str
    status: str


class SubscriptionResponse(CamelModel):
    id: int
    plan_type: str
    status: str
    price_amount: int
    currency: str
    frequency: str
    square_subscription_id: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class UserResponse(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    subscription_active: bool


class LoginUserResponse(UserResponse):
    subscription: Optional[SubscriptionSummary] = None


class AuthResponse(CamelModel):
    success: bool = True
    message: str
    user: UserResponse
    token: str
    session_token: str


class LoginResponse(AuthResponse):
    user: LoginUserResponse


class VerifyResponse(CamelModel):
    success: bool = True
    user: UserResponse


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class PlanResponse(CamelModel):
    plan_type: str
    name: str
    frequency: str
    price_amount: int
    currency: str


class PlansResponse(CamelModel):
    success: bool = True
    plans: list[PlanResponse]


class SubscriptionEnvelope(CamelModel):
    success: bool = True
    message: str
    subscription: Optional[SubscriptionResponse] = None


class WebhookResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    error: Optional[str] = None
    handled: Optional[bool] = None
