"""
Unit tests for registration, login and token/session verification
"""
import os
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from sqlalchemy.exc import IntegrityError, OperationalError
from api.services import security
from api.services.auth_service import AuthService, extract_bearer_token
from api.services.errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredToken,
    MissingToken,
    StorageError,
    UserNotFound,
    ValidationError,
)
from db.models.subscription import Subscription, SUBSCRIPTION_ACTIVE
from db.models.user import User
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository

SECRET = os.environ["JWT_SECRET"]


@pytest.fixture
def user_repo(db_session):
    return UserRepository(db_session)


@pytest.fixture
def subscription_repo(db_session):
    return SubscriptionRepository(db_session)


@pytest.fixture
def auth_service(user_repo, subscription_repo):
    return AuthService(user_repo, subscription_repo, SECRET)


class TestRegister:
    def test_register_lowercases_email_and_starts_session(self, auth_service, user_repo):
        result = auth_service.register("A@X.com", "A", "B", "password1")

        assert result.user.email == "a@x.com"
        assert result.user.subscription_active is False
        assert result.user.password_hash != "password1"
        assert security.verify_token(result.token, SECRET)["sub"] == str(result.user.id)

        session = user_repo.get_session_by_token(result.session_token)
        assert session is not None
        assert session.user_id == result.user.id
        assert session.last_used_at is None

    def test_session_expires_with_token(self, auth_service, user_repo):
        result = auth_service.register("a@x.com", "A", "B", "password1")
        claims = security.verify_token(result.token, SECRET)
        session = user_repo.get_session_by_token(result.session_token)
        expires_at = session.expires_at.replace(tzinfo=timezone.utc)
        assert abs(expires_at.timestamp() - claims["exp"]) < 5

    def test_duplicate_email_any_case(self, auth_service):
        auth_service.register("a@x.com", "A", "B", "password1")
        with pytest.raises(DuplicateEmail):
            auth_service.register("A@X.COM", "C", "D", "password2")

    def test_missing_fields_listed(self, auth_service):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.register("a@x.com", "", None, "password1")
        assert str(exc_info.value) == "Missing required fields: firstName, lastName"

    @pytest.mark.parametrize("email", ["not-an-email", "a@x", "a b@x.com", "@x.com"])
    def test_invalid_email(self, auth_service, email):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.register(email, "A", "B", "password1")
        assert "Invalid email format" in str(exc_info.value)

    def test_short_password(self, auth_service):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.register("a@x.com", "A", "B", "short")
        assert "at least 8 characters" in str(exc_info.value)

    def test_unique_constraint_race_maps_to_duplicate_email(self):
        """The store rejecting the insert is reported as a duplicate, not a storage error"""
        user_repo = Mock()
        user_repo.get_user_by_email.return_value = None
        user_repo.create_user.side_effect = IntegrityError(
            "INSERT INTO users", {}, Exception("UNIQUE constraint failed: users.email")
        )
        service = AuthService(user_repo, Mock(), SECRET)

        with pytest.raises(DuplicateEmail):
            service.register("a@x.com", "A", "B", "password1")
        user_repo.rollback.assert_called_once()

    def test_other_store_failures_are_storage_errors(self):
        user_repo = Mock()
        user_repo.get_user_by_email.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        service = AuthService(user_repo, Mock(), SECRET)

        with pytest.raises(StorageError):
            service.register("a@x.com", "A", "B", "password1")

    def test_service_refuses_missing_secret(self, user_repo, subscription_repo):
        with pytest.raises(RuntimeError):
            AuthService(user_repo, subscription_repo, None)


class TestLogin:
    def test_login_issues_new_session(self, auth_service, user_repo):
        registered = auth_service.register("a@x.com", "A", "B", "password1")
        result = auth_service.login("A@x.com", "password1", ip_address="10.0.0.1", user_agent="pytest")

        assert result.user.id == registered.user.id
        assert result.session_token != registered.session_token
        assert result.user.last_login_at is not None
        assert result.subscription is None

        session = user_repo.get_session_by_token(result.session_token)
        assert session.ip_address == "10.0.0.1"
        assert session.user_agent == "pytest"
        # Older sessions stay valid
        assert auth_service.verify_session(registered.session_token).id == registered.user.id

    def test_wrong_password_and_unknown_email_look_identical(self, auth_service):
        auth_service.register("a@x.com", "A", "B", "password1")

        with pytest.raises(InvalidCredentials) as wrong_password:
            auth_service.login("a@x.com", "wrong")
        with pytest.raises(InvalidCredentials) as unknown_email:
            auth_service.login("nobody@x.com", "password1")

        assert str(wrong_password.value) == str(unknown_email.value) == "Invalid email or password"

    def test_user_without_password_cannot_login(self, auth_service, user_repo):
        user_repo.create_user(User(email="checkout@x.com", first_name="C", last_name="O"))
        with pytest.raises(InvalidCredentials):
            auth_service.login("checkout@x.com", "password1")

    def test_missing_fields(self, auth_service):
        with pytest.raises(ValidationError):
            auth_service.login("", "password1")

    def test_login_attaches_active_subscription(self, auth_service, subscription_repo):
        registered = auth_service.register("a@x.com", "A", "B", "password1")
        subscription_repo.create(
            Subscription(
                user_id=registered.user.id,
                square_subscription_id="SQ_1",
                plan_type="pro-annual",
                status=SUBSCRIPTION_ACTIVE,
                price_amount=2999,
                frequency="ANNUALLY",
            )
        )

        result = auth_service.login("a@x.com", "password1")
        assert result.subscription is not None
        assert result.subscription.plan_type == "pro-annual"
        assert result.subscription.status == "ACTIVE"


class TestVerify:
    def test_verify_reads_user_fresh(self, auth_service, user_repo):
        registered = auth_service.register("a@x.com", "A", "B", "password1")
        user_repo.update_user(registered.user.id, {"subscription_active": True})

        user = auth_service.verify(registered.token)
        assert user.id == registered.user.id
        assert user.subscription_active is True

    def test_missing_token(self, auth_service):
        with pytest.raises(MissingToken):
            auth_service.verify(None)

    def test_invalid_token(self, auth_service):
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.verify("garbage")

    def test_expired_token(self, auth_service):
        token = security.issue_token({"sub": "1"}, SECRET, timedelta(seconds=-1))
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.verify(token)

    def test_deleted_user(self, auth_service):
        token = security.issue_token({"sub": "999"}, SECRET, timedelta(minutes=5))
        with pytest.raises(UserNotFound):
            auth_service.verify(token)

    def test_non_numeric_subject(self, auth_service):
        token = security.issue_token({"sub": "abc"}, SECRET, timedelta(minutes=5))
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.verify(token)


class TestSessions:
    def test_verify_session_touches_last_used(self, auth_service, user_repo):
        registered = auth_service.register("a@x.com", "A", "B", "password1")
        user = auth_service.verify_session(registered.session_token)
        assert user.id == registered.user.id
        assert user_repo.get_session_by_token(registered.session_token).last_used_at is not None

    def test_expired_session_is_inert(self, auth_service, user_repo):
        registered = auth_service.register("a@x.com", "A", "B", "password1")
        session = user_repo.get_session_by_token(registered.session_token)
        user_repo.expire_session(session, datetime.now(timezone.utc) - timedelta(minutes=1))

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.verify_session(registered.session_token)
        # Not deleted, just inert
        assert user_repo.get_session_by_token(registered.session_token) is not None

    def test_logout_ends_only_that_session(self, auth_service):
        registered = auth_service.register("a@x.com", "A", "B", "password1")
        other = auth_service.login("a@x.com", "password1")

        auth_service.logout(registered.session_token)

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.verify_session(registered.session_token)
        assert auth_service.verify_session(other.session_token).id == registered.user.id

    def test_logout_unknown_session(self, auth_service):
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.logout("no-such-session")
        with pytest.raises(MissingToken):
            auth_service.logout(None)


class TestBearerExtraction:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("Basic abc", None),
            ("Bearer ", None),
            (None, None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected
