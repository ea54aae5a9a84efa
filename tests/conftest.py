"""
Shared test configuration and fixtures
"""
import os

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only-0123456789"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FILE"] = os.devnull
os.environ["SQUARE_ACCESS_TOKEN"] = "test-square-token"
os.environ["SQUARE_LOCATION_ID"] = "LOC_TEST"
os.environ["SQUARE_PLAN_PRO_MONTHLY"] = "PLAN_PRO_MONTHLY"
os.environ["SQUARE_PLAN_PRO_ANNUAL"] = "PLAN_PRO_ANNUAL"
os.environ["SQUARE_PLAN_BUSINESS_MONTHLY"] = "PLAN_BUSINESS_MONTHLY"
os.environ["SQUARE_PLAN_BUSINESS_ANNUAL"] = "PLAN_BUSINESS_ANNUAL"

import json
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from api.dependencies import get_billing_gateway, get_db
from api.services.square_gateway import SquareGateway
from db.base import Base

# Import all models to register them with Base
from db.models import User, UserSession, Subscription, Payment, Settings  # noqa: F401

# One connection shared by every thread so the in-memory database survives
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def fake_gateway():
    """Square stand-in that accepts every call"""
    gateway = Mock(spec=SquareGateway)
    gateway.create_customer.return_value = {"id": "CUST_1"}
    gateway.create_card.return_value = {"id": "ccof:CARD_1"}
    gateway.create_subscription.return_value = {"id": "SQ_SUB_1", "status": "ACTIVE"}
    gateway.get_location.return_value = {"id": "LOC_1", "status": "ACTIVE"}
    return gateway


@pytest.fixture
def client(db_session, fake_gateway):
    """Create a test client with overridden database and gateway"""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_gateway] = lambda: fake_gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _square_event(event_type: str, data_object: dict, event_id: str = "evt-1") -> str:
    return json.dumps(
        {
            "merchant_id": "MERCHANT_1",
            "type": event_type,
            "event_id": event_id,
            "created_at": "2026-10-17T10:00:00Z",
            "data": {"type": event_type.split(".")[0], "id": "obj-1", "object": data_object},
        }
    )


@pytest.fixture
def square_event():
    """Serialise a webhook body the way Square sends it"""
    return _square_event
