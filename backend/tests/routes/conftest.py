import pytest
from fastapi.testclient import TestClient

from autoscuola.api.dependencies import (
    get_clock,
    get_db,
    get_notification_service,
    get_payment_gateway,
)
from autoscuola.main import app
from tests.factories.school_builders import COMPANY_ID


@pytest.fixture
def client(db, clock, notifications, gateway):
    """Test client bound to the per-test database, the fixed clock and the fake gateway."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notification_service] = lambda: notifications
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()


@pytest.fixture
def company_headers():
    return {"X-Company-Id": COMPANY_ID}
