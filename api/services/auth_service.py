from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import re
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.services import security
from api.services.errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredToken,
    MissingToken,
    StorageError,
    UserNotFound,
    ValidationError,
)
from db.models.session import UserSession
from db.models.subscription import Subscription
from db.models.user import User
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8
TOKEN_TTL = timedelta(days=7)
SESSION_TTL = timedelta(days=7)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def require_fields(**fields) -> None:
    """Raise ValidationError naming every empty field, in the order given."""
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def validate_email(email: str) -> str:
    email = normalize_email(email)
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


@dataclass
class AuthResult:
    user: User
    token: str
    session_token: str
    subscription: Optional[Subscription] = None


class AuthService:
    def __init__(
        self,
        user_repo: UserRepository,
        subscription_repo: SubscriptionRepository,
        jwt_secret: Optional[str],
    ):
        self.user_repo = user_repo
        self.subscription_repo = subscription_repo
        self.jwt_secret = security.require_secret(jwt_secret)

    def register(
        self,
        email: str,
        first_name: str,
        last_name: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        require_fields(email=email, firstName=first_name, lastName=last_name, password=password)
        email = validate_email(email)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )

        try:
            if self.user_repo.get_user_by_email(email):
                logger.info(f"Registration rejected, email already registered: {email}")
                raise DuplicateEmail()
            user = User(
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                password_hash=security.hash_password(password),
                subscription_active=False,
                email_verified=False,
            )
            self.user_repo.create_user(user)
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            self.user_repo.rollback()
            logger.info(f"Registration hit unique constraint for {email}")
            raise DuplicateEmail()
        except SQLAlchemyError as e:
            self.user_repo.rollback()
            logger.error(f"Failed to create user {email}: {e}")
            raise StorageError("Failed to create user")

        logger.info(f"Registered user {user.id} ({email})")
        token, session = self._start_session(user, ip_address, user_agent, touch=False)
        return AuthResult(user=user, token=token, session_token=session.token)

    def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        if not email or not password:
            raise ValidationError("Email and password are required")

        try:
            user = self.user_repo.get_user_by_email(normalize_email(email))
        except SQLAlchemyError as e:
            logger.error(f"User lookup failed during login: {e}")
            raise StorageError("Failed to look up user")

        if not user:
            # Spend the same hashing time as a real check
            security.pwd_context.dummy_verify()
            logger.info("Login failed: invalid credentials")
            raise InvalidCredentials()
        if not security.verify_password(password, user.password_hash):
            logger.info(f"Login failed for user {user.id}: invalid credentials")
            raise InvalidCredentials()

        now = datetime.now(timezone.utc)
        try:
            self.user_repo.update_user(user.id, {"last_login_at": now})
            subscription = self.subscription_repo.get_active_for_user(user.id)
        except SQLAlchemyError as e:
            self.user_repo.rollback()
            logger.error(f"Failed to record login for user {user.id}: {e}")
            raise StorageError("Failed to record login")

        token, session = self._start_session(user, ip_address, user_agent, touch=True)
        logger.info(f"User {user.id} logged in")
        return AuthResult(
            user=user,
            token=token,
            session_token=session.token,
            subscription=subscription,
        )

    def verify(self, token: Optional[str]) -> User:
        if not token:
            raise MissingToken()
        claims = security.verify_token(token, self.jwt_secret)
        try:
            user_id = int(claims["sub"])
        except (TypeError, ValueError):
            logger.warning(f"Invalid user id in token: {claims.get('sub')!r}")
            raise InvalidOrExpiredToken()

        try:
            user = self.user_repo.get_user_by_id(user_id)
        except SQLAlchemyError as e:
            logger.error(f"User lookup failed during verify: {e}")
            raise StorageError("Failed to look up user")
        if user is None:
            logger.warning(f"Token refers to missing user {user_id}")
            raise UserNotFound()
        return user

    def verify_session(self, session_token: Optional[str]) -> User:
        session = self._live_session(session_token)
        try:
            self.user_repo.touch_session(session, datetime.now(timezone.utc))
            user = self.user_repo.get_user_by_id(session.user_id)
        except SQLAlchemyError as e:
            self.user_repo.rollback()
            logger.error(f"Failed to use session {session.id}: {e}")
            raise StorageError("Failed to update session")
        if user is None:
            raise UserNotFound()
        return user

    def logout(self, session_token: Optional[str]) -> None:
        session = self._live_session(session_token)
        try:
            self.user_repo.expire_session(session, datetime.now(timezone.utc))
        except SQLAlchemyError as e:
            self.user_repo.rollback()
            logger.error(f"Failed to end session {session.id}: {e}")
            raise StorageError("Failed to end session")
        logger.info(f"Session {session.id} for user {session.user_id} logged out")

    def _live_session(self, session_token: Optional[str]) -> UserSession:
        if not session_token:
            raise MissingToken("No session token provided")
        try:
            session = self.user_repo.get_session_by_token(session_token)
        except SQLAlchemyError as e:
            logger.error(f"Session lookup failed: {e}")
            raise StorageError("Failed to look up session")
        if session is None or as_utc(session.expires_at) <= datetime.now(timezone.utc):
            raise InvalidOrExpiredToken("Invalid or expired session")
        return session

    def _start_session(self, user: User, ip_address, user_agent, touch: bool):
        now = datetime.now(timezone.utc)
        token = security.issue_token(
            {"sub": str(user.id), "email": user.email}, self.jwt_secret, TOKEN_TTL
        )
        session = UserSession(
            user_id=user.id,
            token=str(uuid.uuid4()),
            expires_at=now + SESSION_TTL,
            created_at=now,
            last_used_at=now if touch else None,
            ip_address=ip_address,
            user_agent=user_agent[:512] if user_agent else None,
        )
        try:
            self.user_repo.create_session(session)
        except SQLAlchemyError as e:
            self.user_repo.rollback()
            logger.error(f"Failed to create session for user {user.id}: {e}")
            raise StorageError("Failed to create session")
        logger.info(f"Issued token for user {user.id}: {token[:10]}... expires {now + TOKEN_TTL}")
        return token, session
