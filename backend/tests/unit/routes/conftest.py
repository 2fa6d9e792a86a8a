from typing import Iterator
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
import pytest

from auditoryx.api.dependencies import get_db, get_payment_gateway
from auditoryx.integrations.stripe_gateway import GatewayRefund
from auditoryx.main import create_app


@pytest.fixture
def route_gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.refund.return_value = GatewayRefund(id="re_route", status="succeeded", amount_cents=0)
    return gateway


@pytest.fixture
def client(unit_db, route_gateway) -> Iterator[TestClient]:
    app = create_app()

    def _get_db():
        yield unit_db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: route_gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def as_user(uid: str, role: str = "client") -> dict[str, str]:
    return {"X-User-Id": uid, "X-User-Role": role}


@pytest.fixture
def headers():
    return as_user


SYSTEM_HEADERS = {"X-User-Role": "system"}
ADMIN_HEADERS = {"X-User-Id": "01HF4G12ABCDEF3456789ADMIN", "X-User-Role": "admin"}


@pytest.fixture
def system_headers() -> dict[str, str]:
    return dict(SYSTEM_HEADERS)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return dict(ADMIN_HEADERS)
