from typing import Optional
from fastapi import APIRouter, Depends, Header, Request, status
from api.models import (
    AuthResponse,
    LoginRequest,
    LoginResponse,
    LoginUserResponse,
    LogoutRequest,
    MessageResponse,
    RegisterRequest,
    SubscriptionSummary,
    UserResponse,
    VerifyResponse,
)
from api.dependencies import client_ip, get_auth_service, get_current_user, limiter
from api.services.auth_service import AuthService
from db.models.user import User

router = APIRouter(tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/hour")  # Strict limit for signup
def register(
    request: Request,
    body: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    result = auth_service.register(
        body.email,
        body.first_name,
        body.last_name,
        body.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return AuthResponse(
        message="User registered successfully",
        user=UserResponse.model_validate(result.user),
        token=result.token,
        session_token=result.session_token,
    )


@router.post("/login", response_model=LoginResponse)
@limiter.limit("10/minute")  # Prevent brute force
def login(
    request: Request,
    body: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    result = auth_service.login(
        body.email,
        body.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    user = LoginUserResponse.model_validate(result.user)
    if result.subscription is not None:
        user.subscription = SubscriptionSummary.model_validate(result.subscription)
    return LoginResponse(
        message="Login successful",
        user=user,
        token=result.token,
        session_token=result.session_token,
    )


@router.get("/verify", response_model=VerifyResponse)
def verify(current_user: User = Depends(get_current_user)):
    return VerifyResponse(user=UserResponse.model_validate(current_user))


@router.get("/session", response_model=VerifyResponse)
def session(
    x_session_token: Optional[str] = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = auth_service.verify_session(x_session_token)
    return VerifyResponse(user=UserResponse.model_validate(user))


@router.post("/logout", response_model=MessageResponse)
def logout(
    body: LogoutRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.logout(body.session_token)
    return MessageResponse(message="Logged out")
