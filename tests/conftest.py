"""Pytest configuration and shared fixtures."""
import os
from datetime import date, timedelta
from decimal import Decimal
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite:///./test.db")
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ.pop("REDIS_PASSWORD", None)
os.environ.pop("SENTRY_DSN", None)
os.environ.setdefault("CORS_ORIGINS", "http://localhost:3000")
os.environ.setdefault("LOG_FORMAT", "console")

# Mock Redis BEFORE importing app modules that use it
_mock_redis = MagicMock()
_mock_redis.get.return_value = None
_mock_redis.set.return_value = True
_mock_redis.setex.return_value = True
_mock_redis.delete.return_value = 1
_mock_redis.scan.return_value = (0, [])
_mock_redis.ping.return_value = True

# Patch get_redis_client where it's defined and where it's used
_redis_patcher_config = patch("app.config.redis.get_redis_client", return_value=_mock_redis)
_redis_patcher_config.start()
_redis_patcher_cache = patch("app.utils.cache.get_redis_client", return_value=_mock_redis)
_redis_patcher_cache.start()

# Now import after environment is set and Redis is mocked
from fastapi.testclient import TestClient

from app.config.billing import BillingSettings
from app.config.database import Base, get_all_models, get_db
from app.main import app
from app.models.enums import ClaimStatus
from app.services.integrations.clearinghouse import set_submission_gateway

from tests.factories import (
    ALL_FACTORIES,
    ClaimFactory,
    InsuranceCompanyFactory,
    InvoiceFactory,
    ProviderFactory,
)


@pytest.fixture(autouse=True)
def reset_redis_mock():
    """Every test starts with an empty cache."""
    _mock_redis.reset_mock()
    _mock_redis.get.return_value = None
    for method in (_mock_redis.get, _mock_redis.set, _mock_redis.setex, _mock_redis.delete, _mock_redis.scan):
        method.side_effect = None
    _mock_redis.scan.return_value = (0, [])
    yield


@pytest.fixture(autouse=True)
def reset_submission_gateway():
    set_submission_gateway(None)
    yield
    set_submission_gateway(None)


# Test database setup
@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    get_all_models()
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_db: Session) -> Generator[Session, None, None]:
    """Provide a database session for tests, with factories bound to it."""
    for factory_class in ALL_FACTORIES:
        factory_class._meta.sqlalchemy_session = test_db

    yield test_db
    test_db.rollback()


@pytest.fixture(scope="function")
def override_get_db(db_session: Session):
    """Override the get_db dependency."""
    def _get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close in tests

    return _get_db


@pytest.fixture(scope="function")
def client(override_get_db) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    app.dependency_overrides[get_db] = override_get_db
    # 500 errors come back as responses instead of raising
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def mock_redis():
    """The shared Redis mock behind the cache."""
    return _mock_redis


@pytest.fixture
def settings() -> BillingSettings:
    """Billing settings with retries that don't sleep."""
    return BillingSettings(posting_backoff_seconds=0, posting_max_attempts=3)


@pytest.fixture
def mock_celery_task():
    """Stand-in for an AsyncResult returned by `.delay()`."""
    task = MagicMock()
    task.id = "test-task-id"
    task.state = "PENDING"
    return task


# Test data fixtures
@pytest.fixture
def payer(db_session: Session):
    return InsuranceCompanyFactory(name="Acme Health", payer_code="ACME")


@pytest.fixture
def provider(db_session: Session):
    return ProviderFactory(npi="1234567890", name="Dr. Test Provider")


@pytest.fixture
def invoice(db_session: Session, payer, provider):
    """Pending $200 invoice for Maria Garcia billed to Acme Health."""
    return InvoiceFactory(
        patient_id="P-1001",
        patient_name="Maria Garcia",
        insurance_company=payer,
        provider=provider,
        amount=Decimal("200.00"),
        issue_date=date.today() - timedelta(days=10),
    )


@pytest.fixture
def submitted_claim(db_session: Session, invoice):
    """Submitted claim on `invoice`: $200 billed, $50 patient responsibility."""
    return ClaimFactory(
        invoice=invoice,
        patient_responsibility=Decimal("50.00"),
        service_date=invoice.issue_date,
    )


@pytest.fixture
def draft_claim(db_session: Session, invoice):
    return ClaimFactory(invoice=invoice, status=ClaimStatus.DRAFT)
